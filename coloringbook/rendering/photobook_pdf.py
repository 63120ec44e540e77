"""Photobook PDF layout: a title page followed by one captioned page per image."""

from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

PAGE_WIDTH, PAGE_HEIGHT = A4  # 595.28 x 841.89 pt
PAGE_MARGIN = 40
CAPTION_HEIGHT = 40
CAPTION_FONT_SIZE = 12
MAX_IMAGE_DIMENSION = 2048
FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
SUBTITLE = "Generated with ColoringBook.AI"


@dataclass
class Placement:
    x: float
    y: float
    width: float
    height: float


def fit_image(intrinsic_width: int, intrinsic_height: int) -> Placement:
    """Scale an image to the printable area above the caption band and center it."""
    if intrinsic_width <= 0 or intrinsic_height <= 0:
        raise ValueError(f"Invalid image size {intrinsic_width}x{intrinsic_height}")

    available_width = PAGE_WIDTH - PAGE_MARGIN * 2
    available_height = PAGE_HEIGHT - PAGE_MARGIN * 2 - CAPTION_HEIGHT
    scale = min(available_width / intrinsic_width, available_height / intrinsic_height)
    width = intrinsic_width * scale
    height = intrinsic_height * scale
    return Placement(
        x=(PAGE_WIDTH - width) / 2,
        y=PAGE_MARGIN + CAPTION_HEIGHT + (available_height - height) / 2,
        width=width,
        height=height,
    )


def prepare_image(data: bytes) -> Tuple[Image.Image, int, int]:
    """Decode image bytes, flatten transparency onto white, cap the size."""
    image = Image.open(BytesIO(data))
    image.load()
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        image = image.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[-1])
        image = background
    else:
        image = image.convert("RGB")
    image.thumbnail((MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION), Image.Resampling.LANCZOS)
    return image, image.width, image.height


class PhotobookPdf:
    """Incrementally builds a photobook PDF in memory.

    Usage:
        pdf = PhotobookPdf("Summer 2025", description="Our trip")
        pdf.add_image_page(png_bytes, "Beach day")
        data = pdf.render()
    """

    def __init__(
        self,
        title: str,
        description: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ):
        self._buffer = BytesIO()
        self._canvas = canvas.Canvas(self._buffer, pagesize=A4)
        self._canvas.setTitle(title)
        self._canvas.setCreator("ColoringBook.AI")
        self.image_pages = 0
        self._draw_title_page(title, description, generated_at or datetime.now())

    def _draw_title_page(self, title: str, description: Optional[str], generated_at: datetime) -> None:
        c = self._canvas
        center = PAGE_WIDTH / 2

        c.setFont(FONT_BOLD, 28)
        c.drawCentredString(center, PAGE_HEIGHT - 200, title)

        y = PAGE_HEIGHT - 240
        if description:
            c.setFont(FONT, 14)
            c.drawCentredString(center, y, description)
            y -= 30

        c.setFont(FONT, 14)
        c.drawCentredString(center, y, SUBTITLE)
        c.setFont(FONT, 12)
        c.drawCentredString(center, y - 30, generated_at.strftime("%B %d, %Y"))
        c.showPage()

    def add_image_page(self, data: bytes, caption: str) -> None:
        """Append one page. Raises if the bytes cannot be decoded as an image;
        in that case nothing is drawn."""
        image, width, height = prepare_image(data)
        placement = fit_image(width, height)

        c = self._canvas
        c.drawImage(
            ImageReader(image),
            placement.x,
            placement.y,
            width=placement.width,
            height=placement.height,
        )
        c.setFont(FONT, CAPTION_FONT_SIZE)
        c.drawCentredString(PAGE_WIDTH / 2, PAGE_MARGIN, caption)
        c.showPage()
        self.image_pages += 1

    def render(self) -> bytes:
        self._canvas.save()
        return self._buffer.getvalue()
