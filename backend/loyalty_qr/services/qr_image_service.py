# Overview: Renders encoded QR payloads as PNG images for the customer's screen.

from __future__ import annotations

import io

import qrcode


def render_qr_png(qr_data: str, *, box_size: int = 10, border: int = 4) -> bytes:
    """
    Render QR contents as a PNG.

    High error correction keeps the code readable on cracked or dim phone
    screens at the counter.
    """
    if not qr_data:
        raise ValueError("qr_data is required")

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
