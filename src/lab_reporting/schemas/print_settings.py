from __future__ import annotations

from pydantic import Field

from lab_reporting.schemas.base import CamelModel


class LetterheadSettings(CamelModel):
    set_as_default: bool = True
    header_height: float = 4.5  # cm
    case_info_height: float = 3.0
    signature_height: float = 3.4
    footer_height: float = 3.4


class DesignSettings(CamelModel):
    font_family: str = "Arial"
    font_size: int = 12
    spacing: float = 1
    indent_nested: bool = False
    bold_values: bool = False
    red_abnormal: bool = False
    bold_abnormal: bool = False


class GeneralSettings(CamelModel):
    use_hl_markers: bool = Field(default=True, alias="useHLMarkers")
    category_new_page: bool = False
    use_nabl_format: bool = Field(default=False, alias="useNABLFormat")
    capitalize_tests: bool = False


class ShowHideSettings(CamelModel):
    show_page_number: bool = True
    show_qr_code: bool = Field(default=True, alias="showQRCode")
    show_tat_time: bool = Field(default=False, alias="showTATTime")


class PrintSettings(CamelModel):
    branch_id: str | None = None
    with_letterhead: bool = True
    letterhead: LetterheadSettings = Field(default_factory=LetterheadSettings)
    design: DesignSettings = Field(default_factory=DesignSettings)
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    show_hide: ShowHideSettings = Field(default_factory=ShowHideSettings)


class Letterhead(CamelModel):
    branch_id: str | None = None
    header_image: str | None = None  # URL or local path
    header_height: float = 100
    footer_image: str | None = None
    footer_height: float = 100


class Signature(CamelModel):
    name: str
    designation: str = ""
    image_url: str | None = None
