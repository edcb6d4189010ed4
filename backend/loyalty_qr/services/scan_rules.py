# Overview: Scan-context checks applied after a token has been verified and consumed.

"""
Scan Rules

A token that verifies is not automatically acceptable where it was scanned.
The staff device scans on behalf of one restaurant and in one mode:

- customer:   any QR code issued by this restaurant
- redemption: only reward redemption QR codes issued by this restaurant

NOTE: These checks run after verify_and_consume_token, so a QR code rejected
here has already been spent. The customer needs a fresh one.
"""

from __future__ import annotations

from .qr_token_service import VerificationResult, PAYLOAD_TYPE_REDEMPTION


MODE_CUSTOMER = "customer"
MODE_REDEMPTION = "redemption"
SCAN_MODES = (MODE_CUSTOMER, MODE_REDEMPTION)

ERR_DEFAULT_INVALID = "Invalid QR code or token already consumed."
ERR_WRONG_RESTAURANT = "QR code is not valid for this restaurant."
ERR_NOT_REDEMPTION = "Please scan a reward redemption QR code, not a customer QR."


def validate_mode(mode: str) -> str:
    if mode not in SCAN_MODES:
        raise ValueError(f"mode must be one of: {', '.join(SCAN_MODES)}")
    return mode


def check_scan_context(result: VerificationResult, restaurant_id: str, mode: str = MODE_CUSTOMER) -> str | None:
    """
    Return the error to show for a verification result, or None to accept it.
    """
    validate_mode(mode)

    if not result.valid:
        return result.error or ERR_DEFAULT_INVALID

    payload = result.payload or {}
    if payload.get("restaurantId") != restaurant_id:
        return ERR_WRONG_RESTAURANT

    if mode == MODE_REDEMPTION and payload.get("type") != PAYLOAD_TYPE_REDEMPTION:
        return ERR_NOT_REDEMPTION

    return None
