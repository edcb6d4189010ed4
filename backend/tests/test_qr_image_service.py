import pytest

from loyalty_qr.services.qr_image_service import render_qr_png


PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def test_renders_png():
    assert render_qr_png("eyJ0b2tlbiI6ICJhYmMifQ==").startswith(PNG_MAGIC)


def test_larger_boxes_make_larger_images():
    small = render_qr_png("payload", box_size=2)
    large = render_qr_png("payload", box_size=12)
    assert len(large) > len(small)


def test_empty_payload_rejected():
    with pytest.raises(ValueError):
        render_qr_png("")
