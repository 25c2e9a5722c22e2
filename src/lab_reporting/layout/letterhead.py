from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from lab_reporting.schemas.config import ReportingConfig
from lab_reporting.schemas.document import PageLayout
from lab_reporting.schemas.print_settings import Letterhead, PrintSettings

logger = logging.getLogger(__name__)


def band_height_cm(image_path: str | Path | None, page_width_cm: float) -> float | None:
    """Height of a letterhead image drawn across the full page width.

    Only local files are measured; remote URLs and unreadable files return
    None so the caller can fall back to the configured height.
    """
    if not image_path or str(image_path).startswith(("http://", "https://", "data:")):
        return None
    path = Path(image_path)
    if not path.exists():
        logger.debug("layout: letterhead image %s not found", path)
        return None

    try:
        with Image.open(path) as img:
            # Phone scans carry their rotation in EXIF
            img = ImageOps.exif_transpose(img)
            width, height = img.size
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("layout: cannot read letterhead image %s - %s", path, exc)
        return None

    if width == 0:
        return None
    return round(page_width_cm * height / width, 2)


def page_layout(
    settings: PrintSettings,
    letterhead: Letterhead | None = None,
    config: ReportingConfig | None = None,
) -> PageLayout:
    """Split the page into header, case info, body, signature and footer bands.

    With a default letterhead the header and footer keep the images' natural
    aspect ratio; otherwise the heights from the print settings are used.
    Without a letterhead the header and footer bands are empty.
    """
    config = config or ReportingConfig()
    bands = settings.letterhead
    header = footer = 0.0

    if settings.with_letterhead:
        header, footer = bands.header_height, bands.footer_height
        if bands.set_as_default and letterhead is not None:
            measured = band_height_cm(letterhead.header_image, config.page_width_cm)
            header = measured if measured is not None else header
            measured = band_height_cm(letterhead.footer_image, config.page_width_cm)
            footer = measured if measured is not None else footer

    used = header + bands.case_info_height + bands.signature_height + footer
    return PageLayout(
        page_height=config.page_height_cm,
        header_height=header,
        case_info_height=bands.case_info_height,
        signature_height=bands.signature_height,
        footer_height=footer,
        body_height=round(max(config.page_height_cm - used, 0.0), 2),
    )
