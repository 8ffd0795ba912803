from __future__ import annotations

from hours_ledger.identity.qr import render_qr_png


def test_render_qr_png_returns_png_bytes():
    png = render_qr_png("S1", "E1")

    assert png.startswith(b"\x89PNG\r\n\x1a\n")
    assert len(png) > 100


def test_render_qr_png_box_size_changes_image():
    small = render_qr_png("S1", "E1", box_size=2)
    large = render_qr_png("S1", "E1", box_size=12)

    assert small != large
