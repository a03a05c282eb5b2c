import base64
import io
import logging
import os
from typing import List, Optional, Sequence, Tuple

from fpdf import FPDF
from PIL import Image, ImageOps

from models import ComicPage

logger = logging.getLogger(__name__)

MARGIN = 20  # pt
GUTTER = 10  # pt
RENDER_SCALE = 2  # pixels per point when cropping images into slots

Slot = Tuple[float, float, float, float]  # x, y, w, h


def layout_slots(layout: str, x: float, y: float, width: float, height: float, gutter: float = GUTTER) -> List[Slot]:
    """Splits the printable area into panel slots for a layout tag."""
    half_w = (width - gutter) / 2
    half_h = (height - gutter) / 2
    third_h = (height - 2 * gutter) / 3
    if layout == "2x1":
        return [(x, y, half_w, height), (x + half_w + gutter, y, half_w, height)]
    if layout == "1x2":
        return [(x, y, width, half_h), (x, y + half_h + gutter, width, half_h)]
    if layout == "2x2":
        return [
            (x, y, half_w, half_h),
            (x + half_w + gutter, y, half_w, half_h),
            (x, y + half_h + gutter, half_w, half_h),
            (x + half_w + gutter, y + half_h + gutter, half_w, half_h),
        ]
    if layout == "3_strip_vertical":
        return [(x, y + i * (third_h + gutter), width, third_h) for i in range(3)]
    if layout == "2_over_1":
        return [
            (x, y, half_w, half_h),
            (x + half_w + gutter, y, half_w, half_h),
            (x, y + half_h + gutter, width, half_h),
        ]
    if layout == "1_over_2":
        return [
            (x, y, width, half_h),
            (x, y + half_h + gutter, half_w, half_h),
            (x + half_w + gutter, y + half_h + gutter, half_w, half_h),
        ]
    return [(x, y, width, height)]


def load_image(image_ref: str) -> Image.Image:
    """Opens a data URI or a local file path as an RGB image."""
    if image_ref.startswith("data:"):
        _header, b64_data = image_ref.split(",", 1)
        return Image.open(io.BytesIO(base64.b64decode(b64_data))).convert("RGB")
    if os.path.exists(image_ref):
        return Image.open(image_ref).convert("RGB")
    raise ValueError(f"Unsupported image reference: {image_ref[:60]}")


def _place(pdf: FPDF, image_ref: str, slot: Slot) -> None:
    x, y, w, h = slot
    try:
        img = load_image(image_ref)
    except Exception as e:
        logger.warning("Skipping unreadable panel image: %s", e)
        return
    img = ImageOps.fit(img, (max(1, int(w * RENDER_SCALE)), max(1, int(h * RENDER_SCALE))))
    pdf.image(img, x=x, y=y, w=w, h=h)


def build_comic_pdf(pages: Sequence[ComicPage], cover_image_url: Optional[str] = None) -> bytes:
    """Renders the cover and every page onto A4 sheets and returns the PDF bytes."""
    pdf = FPDF(orientation="P", unit="pt", format="A4")
    pdf.set_auto_page_break(auto=False)
    area_w = pdf.w - MARGIN * 2
    area_h = pdf.h - MARGIN * 2

    if cover_image_url:
        pdf.add_page()
        _place(pdf, cover_image_url, (MARGIN, MARGIN, area_w, area_h))

    for page in pages:
        pdf.add_page()
        slots = layout_slots(page.layout, MARGIN, MARGIN, area_w, area_h)
        if len(page.panels) > len(slots):
            logger.warning("Layout %s holds %d panels, %d not printed.",
                           page.layout, len(slots), len(page.panels) - len(slots))
        for panel, slot in zip(page.panels, slots):
            _place(pdf, panel.imageUrl, slot)

    if pdf.page_no() == 0:
        pdf.add_page()
    return bytes(pdf.output())
