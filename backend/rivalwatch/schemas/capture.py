"""Capture request/response shapes (Screenshot vendor)."""
from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import Field, field_validator

from rivalwatch.schemas.base import CamelModel


class ImageFormat(str, enum.Enum):
    PNG = "png"
    JPG = "jpg"
    WEBP = "webp"


class CaptureOptions(CamelModel):
    """Vendor capture options. Defaults are the service-wide capture defaults."""

    url: str
    run_id: str

    # Capture
    format: ImageFormat = ImageFormat.PNG
    image_quality: int = Field(default=80, ge=0, le=100)
    capture_beyond_viewport: bool = True
    full_page: bool = True
    full_page_scroll: Optional[bool] = None
    full_page_algorithm: str = "default"

    # Blocking
    block_ads: bool = True
    block_cookie_banners: bool = True
    block_banners_by_heuristics: bool = True
    block_trackers: bool = True
    block_chats: bool = True
    block_requests: list[str] = Field(default_factory=list)
    block_resources: list[str] = Field(default_factory=list)

    # Wait and delay
    delay: int = 0
    timeout: int = 60
    navigation_timeout: int = 30
    wait_until: list[str] = Field(default_factory=lambda: ["networkidle2", "networkidle0"])
    script_wait_until: list[str] = Field(default_factory=list)
    wait_for_selector: Optional[str] = None
    wait_for_selector_algorithm: Optional[str] = None

    # Styling
    dark_mode: bool = False
    reduced_motion: bool = True

    # Selectors
    selector: Optional[str] = None
    scroll_into_view: Optional[str] = None
    hide_selectors: list[str] = Field(default_factory=list)

    # Response metadata
    metadata_image_size: bool = True
    metadata_page_title: bool = True
    metadata_content: bool = True
    metadata_http_status_code: bool = True
    metadata_http_headers: Optional[bool] = None

    # Free-form pass-through flags appended verbatim to the vendor query.
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an absolute http(s) URL")
        return v


class CapturePaths(CamelModel):
    screenshot: Optional[str] = None
    content: Optional[str] = None


class CaptureMetadata(CamelModel):
    image_width: int = 0
    image_height: int = 0
    page_title: Optional[str] = None


class CaptureResult(CamelModel):
    paths: CapturePaths
    metadata: CaptureMetadata
    size: int
    content_type: str
    week_number: str
