"""Page layout helpers for report documents."""

from lab_reporting.layout.letterhead import band_height_cm, page_layout

__all__ = ["band_height_cm", "page_layout"]
