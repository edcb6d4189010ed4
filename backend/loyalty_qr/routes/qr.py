# Overview: Flask API routes for QR token issuance, verification and cleanup; parses input and returns JSON responses.

# backend/loyalty_qr/routes/qr.py
"""
QR token API routes

- Issuing routes check the customer (and reward) against the restaurant in
  the path before minting anything. Foreign IDs answer 404 like missing ones.
- /api/qr/verify consumes the token and answers 200 with {valid, payload?, error?}
  for every validation outcome. Only malformed requests get a 400.
- /api/restaurants/<id>/qr/scan adds the staff scanner's restaurant and mode
  checks on top of verify.
"""

from flask import Blueprint, request, jsonify, current_app, Response

from ..services import qr_token_service, qr_image_service
from ..services.qr_token_service import QRTokenIssueError
from ..services.scan_rules import check_scan_context, validate_mode, MODE_CUSTOMER
from ..services.tenant_service import (
    NotFoundError,
    require_restaurant,
    require_customer_in_restaurant,
    require_reward_in_restaurant,
)


qr_bp = Blueprint("qr", __name__, url_prefix="/api")


def _ttl_from_request(default: int) -> int:
    data = request.get_json(silent=True) or {}
    ttl = data.get("expires_in_minutes", default)
    if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
        raise ValueError("expires_in_minutes must be a positive integer")
    return ttl


def _qr_data_from_request() -> str:
    data = request.get_json(silent=True) or {}
    qr_data = data.get("qr_data")
    if not isinstance(qr_data, str) or not qr_data:
        raise ValueError("qr_data required")
    return qr_data


@qr_bp.post("/restaurants/<restaurant_id>/customers/<customer_id>/qr")
def issue_customer_qr_route(restaurant_id: str, customer_id: str):
    """
    Issue a customer-identification QR code.

    Body (optional): {"expires_in_minutes": 5}
    """
    try:
        ttl = _ttl_from_request(current_app.config["QR_CUSTOMER_TTL_MINUTES"])
        require_restaurant(restaurant_id)
        require_customer_in_restaurant(customer_id, restaurant_id)

        qr_data = qr_token_service.generate_customer_qr_token(
            restaurant_id=restaurant_id,
            customer_id=customer_id,
            expires_in_minutes=ttl,
        )
        return jsonify({"qr_data": qr_data, "expires_in_minutes": ttl}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except QRTokenIssueError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to issue customer QR code")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.post("/restaurants/<restaurant_id>/customers/<customer_id>/rewards/<reward_id>/qr")
def issue_redemption_qr_route(restaurant_id: str, customer_id: str, reward_id: str):
    """
    Issue a reward-redemption QR code.

    Body (optional): {"expires_in_minutes": 10}
    """
    try:
        ttl = _ttl_from_request(current_app.config["QR_REDEMPTION_TTL_MINUTES"])
        require_restaurant(restaurant_id)
        require_customer_in_restaurant(customer_id, restaurant_id)
        require_reward_in_restaurant(reward_id, restaurant_id)

        qr_data = qr_token_service.generate_redemption_qr_token(
            restaurant_id=restaurant_id,
            customer_id=customer_id,
            reward_id=reward_id,
            expires_in_minutes=ttl,
        )
        return jsonify({"qr_data": qr_data, "expires_in_minutes": ttl}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except QRTokenIssueError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to issue redemption QR code")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.post("/qr/verify")
def verify_qr_route():
    """
    Verify and consume a scanned QR code.

    Body: {"qr_data": "<base64 payload>"}
    """
    try:
        qr_data = _qr_data_from_request()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    result = qr_token_service.verify_and_consume_token(qr_data)
    return jsonify(result.to_dict()), 200


@qr_bp.post("/restaurants/<restaurant_id>/qr/scan")
def scan_qr_route(restaurant_id: str):
    """
    Verify a QR code the way the staff scanner does.

    Body: {"qr_data": "<base64 payload>", "mode": "customer" | "redemption"}

    NOTE: The token is consumed before the restaurant and mode checks run.
    """
    try:
        data = request.get_json(silent=True) or {}
        qr_data = _qr_data_from_request()
        mode = validate_mode(data.get("mode", MODE_CUSTOMER))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    result = qr_token_service.verify_and_consume_token(qr_data)
    error = check_scan_context(result, restaurant_id, mode)
    if error:
        return jsonify({"valid": False, "error": error}), 200

    return jsonify(result.to_dict()), 200


@qr_bp.post("/qr/info")
def token_info_route():
    """
    Preview the record behind a QR code without consuming it.

    Debugging aid only; never use this to grant anything.
    """
    try:
        qr_data = _qr_data_from_request()
        info = qr_token_service.get_token_info(qr_data)

        if not info:
            return jsonify({"error": "QR token not found"}), 404

        return jsonify({"token": info}), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to load QR token info")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.post("/qr/image")
def qr_image_route():
    """Render QR contents as a PNG for the customer's screen."""
    try:
        qr_data = _qr_data_from_request()
        png = qr_image_service.render_qr_png(qr_data)
        return Response(png, mimetype="image/png")

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to render QR image")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.delete("/restaurants/<restaurant_id>/qr/expired")
def cleanup_expired_route(restaurant_id: str):
    """Delete this restaurant's expired QR tokens, used or not."""
    try:
        require_restaurant(restaurant_id)
        deleted = qr_token_service.cleanup_expired_tokens(restaurant_id)
        return jsonify({"deleted": deleted}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to clean up expired QR tokens")
        return jsonify({"error": "Internal server error"}), 500
