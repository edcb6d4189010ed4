# Overview: Service-layer operations for QR tokens; issuance, verification and the expiry sweep.

"""
QR Token Service

WHY: In-person interactions (identifying a customer at the counter, redeeming
a reward) are authenticated by a QR code the customer shows on their phone.
The code carries a capability token that the staff scanner sends back here.

TOKEN PROPERTIES:
- 32 bytes from a CSPRNG, hex-encoded (64 characters, 256 bits)
- Bound to one restaurant (tenant) and one customer
- Short-lived: 5 minutes for customer QR codes, 10 for redemption QR codes
- Single use: consumed by a conditional UPDATE ... WHERE used = false

WIRE FORMAT (the literal QR contents):
    base64(JSON {customerId, restaurantId, timestamp, token})
    base64(JSON {type: "redemption", customerId, restaurantId, rewardId, timestamp, token})

The payload timestamp is informational. Expiry is enforced from the stored
record only.

ERRORS: Verification never raises. Every failure comes back as a
VerificationResult with valid=False and a fixed message. Unknown tokens,
tokens from another restaurant or customer, and consumed tokens all share
one message so a scanner cannot be used to probe which tokens exist.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import QRToken
from .concurrency import run_with_retry
from loyalty_qr.time_utils import utcnow, epoch_ms, as_utc_naive


logger = logging.getLogger(__name__)


# Configuration constants
CUSTOMER_TOKEN_TTL_MINUTES = 5
REDEMPTION_TOKEN_TTL_MINUTES = 10
TOKEN_BYTES = 32

PAYLOAD_TYPE_REDEMPTION = "redemption"
REQUIRED_PAYLOAD_FIELDS = ("customerId", "restaurantId", "token")

# Verification messages (shown to staff as-is)
ERR_INVALID_FORMAT = "Invalid QR code format"
ERR_MISSING_FIELDS = "Missing required fields in QR code"
ERR_LOOKUP_FAILED = "Error verifying QR code"
ERR_NOT_FOUND = "QR code not found or already used"
ERR_EXPIRED = "QR code has expired"
ERR_PROCESSING = "Error processing QR code"
ERR_VERIFY_FAILED = "Failed to verify QR code"


class QRTokenIssueError(Exception):
    """Raised when a token record cannot be stored. No QR code is produced."""
    pass


@dataclass
class VerificationResult:
    """
    Tagged result of verify_and_consume_token.

    valid=True carries the decoded payload; valid=False carries an error message.
    """
    valid: bool
    payload: dict | None = None
    error: str | None = None

    @classmethod
    def ok(cls, payload: dict) -> "VerificationResult":
        return cls(valid=True, payload=payload)

    @classmethod
    def fail(cls, error: str) -> "VerificationResult":
        return cls(valid=False, error=error)

    def to_dict(self) -> dict:
        data = {"valid": self.valid}
        if self.payload is not None:
            data["payload"] = self.payload
        if self.error is not None:
            data["error"] = self.error
        return data


def generate_token() -> str:
    """
    Generate a cryptographically secure random token.

    Returns 64-character lowercase hex string (32 bytes of entropy).

    WHY secrets.token_hex: Cryptographically secure PRNG.
    DO NOT use random.random() or uuid4() for capability tokens!
    """
    return secrets.token_hex(TOKEN_BYTES)


def encode_payload(payload: dict) -> str:
    """
    Serialize a payload to the QR wire format.

    Compact JSON (no whitespace) keeps the output identical to what a
    browser's btoa(JSON.stringify(payload)) produces for the same keys.
    """
    raw = json.dumps(payload, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_payload(encoded_payload) -> dict:
    """
    Parse QR contents back into a payload dict.

    Raises ValueError on anything that is not base64-encoded JSON object text.
    """
    if not isinstance(encoded_payload, str):
        raise ValueError(ERR_INVALID_FORMAT)
    try:
        raw = base64.b64decode(encoded_payload.strip(), validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(ERR_INVALID_FORMAT) from exc
    if not isinstance(payload, dict):
        raise ValueError(ERR_INVALID_FORMAT)
    return payload


def _has_required_fields(payload: dict) -> bool:
    for field in REQUIRED_PAYLOAD_FIELDS:
        value = payload.get(field)
        if not isinstance(value, str) or not value.strip():
            return False
    return True


def _store_token(
    restaurant_id: str,
    customer_id: str,
    expires_in_minutes: int,
    reward_id: str | None = None,
) -> QRToken:
    if expires_in_minutes <= 0:
        raise ValueError("expires_in_minutes must be > 0")

    token = generate_token()
    expires_at = utcnow() + timedelta(minutes=expires_in_minutes)

    def _insert():
        record = QRToken(
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            token=token,
            reward_id=reward_id,
            expires_at=expires_at,
            used=False,
        )
        db.session.add(record)
        db.session.commit()
        return record

    return run_with_retry(_insert)


def generate_customer_qr_token(
    restaurant_id: str,
    customer_id: str,
    expires_in_minutes: int = CUSTOMER_TOKEN_TTL_MINUTES,
) -> str:
    """
    Issue a customer-identification QR code.

    Stores a fresh token record and returns the base64 payload to render.

    Raises QRTokenIssueError if the record cannot be stored.
    """
    try:
        record = _store_token(restaurant_id, customer_id, expires_in_minutes)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Error storing QR token for restaurant %s", restaurant_id)
        raise QRTokenIssueError("Failed to generate QR token") from exc

    payload = {
        "customerId": customer_id,
        "restaurantId": restaurant_id,
        "timestamp": epoch_ms(),
        "token": record.token,
    }
    return encode_payload(payload)


def generate_redemption_qr_token(
    restaurant_id: str,
    customer_id: str,
    reward_id: str,
    expires_in_minutes: int = REDEMPTION_TOKEN_TTL_MINUTES,
) -> str:
    """
    Issue a reward-redemption QR code.

    Same as generate_customer_qr_token, but the record carries reward_id and
    the payload is tagged type="redemption" so a redemption scanner can tell
    it apart from a customer QR code.

    Raises QRTokenIssueError if the record cannot be stored.
    """
    try:
        record = _store_token(restaurant_id, customer_id, expires_in_minutes, reward_id=reward_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Error storing redemption QR token for restaurant %s", restaurant_id)
        raise QRTokenIssueError("Failed to generate redemption QR token") from exc

    payload = {
        "type": PAYLOAD_TYPE_REDEMPTION,
        "customerId": customer_id,
        "restaurantId": restaurant_id,
        "rewardId": reward_id,
        "timestamp": epoch_ms(),
        "token": record.token,
    }
    return encode_payload(payload)


def _find_unused_token(payload: dict) -> QRToken | None:
    return db.session.query(QRToken).filter_by(
        token=payload["token"],
        customer_id=payload["customerId"],
        restaurant_id=payload["restaurantId"],
        used=False,
    ).one_or_none()


def _consume(token_id: str) -> bool:
    """
    Flip used to True if, and only if, it is still False.

    Returns False when another scanner consumed the token first.
    """
    def _op():
        updated = db.session.query(QRToken).filter(
            QRToken.id == token_id,
            QRToken.used.is_(False),
        ).update({QRToken.used: True}, synchronize_session=False)
        db.session.commit()
        return updated

    return run_with_retry(_op) == 1


def _verify_and_consume(encoded_payload) -> VerificationResult:
    try:
        payload = decode_payload(encoded_payload)
    except ValueError:
        return VerificationResult.fail(ERR_INVALID_FORMAT)

    if not _has_required_fields(payload):
        return VerificationResult.fail(ERR_MISSING_FIELDS)

    try:
        record = _find_unused_token(payload)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Error verifying QR token")
        return VerificationResult.fail(ERR_LOOKUP_FAILED)

    if record is None:
        return VerificationResult.fail(ERR_NOT_FOUND)

    # Expired tokens stay unused; the sweep removes them
    if as_utc_naive(record.expires_at) < utcnow():
        return VerificationResult.fail(ERR_EXPIRED)

    # rollback expires record; keep the id for logging
    token_id = record.id
    try:
        consumed = _consume(token_id)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Error marking QR token %s as used", token_id)
        return VerificationResult.fail(ERR_PROCESSING)

    if not consumed:
        return VerificationResult.fail(ERR_NOT_FOUND)

    logger.info(
        "QR token consumed restaurant=%s customer=%s type=%s",
        payload["restaurantId"], payload["customerId"], payload.get("type", "customer"),
    )
    return VerificationResult.ok(payload)


def verify_and_consume_token(encoded_payload) -> VerificationResult:
    """
    Verify QR contents and consume the token behind them.

    Steps (first failure wins):
    1. Decode base64 + JSON            -> "Invalid QR code format"
    2. customerId/restaurantId/token   -> "Missing required fields in QR code"
    3. Unused record for all three     -> "QR code not found or already used"
    4. Not past expires_at             -> "QR code has expired"
    5. Conditional update used=True    -> "Error processing QR code" on failure,
                                          "QR code not found or already used" if
                                          another scan won the race

    CONCURRENCY: The conditional update is the only serialization point. Two
    scans of the same live token yield exactly one valid result.
    """
    try:
        return _verify_and_consume(encoded_payload)
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected error in verify_and_consume_token")
        return VerificationResult.fail(ERR_VERIFY_FAILED)


def get_token_info(encoded_payload) -> dict | None:
    """
    Look up the record behind QR contents without consuming it.

    Ignores used and expires_at. For previews and debugging only; never use
    the result to grant access.
    """
    try:
        payload = decode_payload(encoded_payload)
    except ValueError:
        return None

    if not _has_required_fields(payload):
        return None

    record = db.session.query(QRToken).options(
        joinedload(QRToken.customer)
    ).filter_by(
        token=payload["token"],
        customer_id=payload["customerId"],
        restaurant_id=payload["restaurantId"],
    ).one_or_none()

    if record is None:
        return None

    info = record.to_dict()
    info["customer"] = record.customer.to_dict() if record.customer else None
    return info


def cleanup_expired_tokens(restaurant_id: str) -> int:
    """
    Delete every token of a restaurant whose expires_at has passed.

    Used and unused tokens alike. Idempotent; safe on any schedule.
    Returns the number of records deleted.
    """
    cutoff = utcnow()
    try:
        deleted = db.session.query(QRToken).filter(
            QRToken.restaurant_id == restaurant_id,
            QRToken.expires_at < cutoff,
        ).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Error cleaning up expired QR tokens for restaurant %s", restaurant_id)
        raise

    if deleted:
        logger.info("Deleted %d expired QR tokens for restaurant %s", deleted, restaurant_id)
    return deleted
