from __future__ import annotations

import io

import qrcode

from .codec import encode


def render_qr_png(student_id: str, event_id: str, *, box_size: int = 10, border: int = 2) -> bytes:
    """Render the badge QR code for a student/event pair as PNG bytes."""

    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=box_size,
        border=border,
    )
    qr.add_data(encode(student_id, event_id))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
