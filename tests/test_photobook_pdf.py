import re
from datetime import datetime

import pytest

from conftest import make_png
from coloringbook.rendering.photobook_pdf import (
    CAPTION_HEIGHT,
    MAX_IMAGE_DIMENSION,
    PAGE_HEIGHT,
    PAGE_MARGIN,
    PAGE_WIDTH,
    PhotobookPdf,
    fit_image,
    prepare_image,
)


def test_fit_image_fills_width_for_landscape_images():
    placement = fit_image(2000, 1000)

    assert placement.width == pytest.approx(PAGE_WIDTH - 2 * PAGE_MARGIN)
    assert placement.height == pytest.approx(placement.width / 2)
    assert placement.x == pytest.approx(PAGE_MARGIN)


def test_fit_image_is_bounded_by_height_for_tall_images():
    placement = fit_image(100, 1000)

    available_height = PAGE_HEIGHT - 2 * PAGE_MARGIN - CAPTION_HEIGHT
    assert placement.height == pytest.approx(available_height)
    assert placement.y == pytest.approx(PAGE_MARGIN + CAPTION_HEIGHT)
    assert placement.x + placement.width / 2 == pytest.approx(PAGE_WIDTH / 2)


def test_fit_image_rejects_empty_dimensions():
    with pytest.raises(ValueError):
        fit_image(0, 100)


def test_prepare_image_flattens_transparency_and_caps_size():
    image, width, height = prepare_image(make_png(4096, 1024, mode="RGBA"))

    assert image.mode == "RGB"
    assert (width, height) == (MAX_IMAGE_DIMENSION, 512)
    assert image.getpixel((0, 0)) == (255, 255, 255)


def test_render_produces_title_page_plus_one_page_per_image():
    pdf = PhotobookPdf("Summer", "Our trip", generated_at=datetime(2025, 7, 1))
    pdf.add_image_page(make_png(), "Beach")
    pdf.add_image_page(make_png(30, 90), "Forest")

    data = pdf.render()

    assert data.startswith(b"%PDF")
    assert pdf.image_pages == 2
    assert len(re.findall(rb"/Type /Page\b", data)) == 3


def test_undecodable_bytes_do_not_add_a_page():
    pdf = PhotobookPdf("Summer")

    with pytest.raises(Exception):
        pdf.add_image_page(b"garbage", "Broken")

    assert pdf.image_pages == 0
