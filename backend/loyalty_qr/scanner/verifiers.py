# Overview: Ways for the scanner to reach verify_and_consume_token.

"""
Verifiers

A verifier is any callable taking the decoded QR text and returning a
VerificationResult. Two are provided:

- LocalVerifier: same process as the Flask app (kiosk mode, CLI)
- HTTPVerifier: a staff device talking to the API over HTTP

Transport failures in HTTPVerifier raise; the scanner treats them as an
unexpected processing error and resumes scanning.
"""

from __future__ import annotations

import httpx

from ..extensions import db
from ..services import qr_token_service
from ..services.qr_token_service import VerificationResult


class LocalVerifier:
    def __init__(self, app):
        self.app = app

    def __call__(self, qr_data: str) -> VerificationResult:
        with self.app.app_context():
            try:
                return qr_token_service.verify_and_consume_token(qr_data)
            finally:
                db.session.remove()


class HTTPVerifier:
    """
    Posts QR contents to /api/qr/verify.

    No timeout is set unless one is given; httpx's default applies.
    """

    VERIFY_PATH = "/api/qr/verify"

    def __init__(self, base_url: str, timeout: float | None = None, transport=None):
        kwargs = {"base_url": base_url}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.Client(**kwargs)

    def __call__(self, qr_data: str) -> VerificationResult:
        response = self._client.post(self.VERIFY_PATH, json={"qr_data": qr_data})
        response.raise_for_status()
        data = response.json()
        return VerificationResult(
            valid=bool(data.get("valid")),
            payload=data.get("payload"),
            error=data.get("error"),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
