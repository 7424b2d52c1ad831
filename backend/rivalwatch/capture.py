"""Capture collaborator: screenshot vendor client plus snapshot persistence.

One vendor call returns the image bytes and headers carrying dimensions,
page title and a follow-up URL for the rendered HTML. The image is stored at
the snapshot's screenshot path; the HTML is reduced to readable text and
stored at the content path, which is what the diff engine compares.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import unquote

import httpx
import trafilatura

from rivalwatch.errors import CaptureServiceError
from rivalwatch.metrics import CAPTURE_ATTEMPTS_TOTAL, CAPTURE_LATENCY_SECONDS
from rivalwatch.paths import SnapshotRef, current_week_number, locate, normalize_week
from rivalwatch.schemas.capture import (
    CaptureMetadata,
    CaptureOptions,
    CapturePaths,
    CaptureResult,
)
from rivalwatch.storage import BlobStore

logger = logging.getLogger(__name__)

HEADER_IMAGE_WIDTH = "X-ScreenshotOne-Image-Width"
HEADER_IMAGE_HEIGHT = "X-ScreenshotOne-Image-Height"
HEADER_CONTENT_URL = "X-ScreenshotOne-Content-URL"
HEADER_PAGE_TITLE = "X-ScreenshotOne-Page-Title"


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def build_capture_params(api_key: str, options: CaptureOptions) -> list[tuple[str, str]]:
    """Vendor query parameters; list-valued options repeat their key."""
    params: list[tuple[str, str]] = []

    def add(key: str, value: Any) -> None:
        if value is None:
            return
        if isinstance(value, (list, tuple)):
            for item in value:
                params.append((key, _param_value(item)))
            return
        params.append((key, _param_value(value)))

    add("access_key", api_key)
    add("url", options.url)
    add("format", options.format)
    add("response_type", "by_format")

    add("block_ads", options.block_ads)
    add("block_cookie_banners", options.block_cookie_banners)
    add("block_banners_by_heuristics", options.block_banners_by_heuristics)
    add("block_trackers", options.block_trackers)
    add("block_chats", options.block_chats)
    add("block_resources", options.block_resources)
    add("block_request", options.block_requests)

    add("delay", options.delay)
    add("timeout", options.timeout)
    add("navigation_timeout", options.navigation_timeout)
    add("wait_until", options.wait_until)
    add("scripts_wait_until", options.script_wait_until)
    add("wait_for_selector", options.wait_for_selector)
    add("wait_for_selector_algorithm", options.wait_for_selector_algorithm)

    add("dark_mode", options.dark_mode)
    add("reduced_motion", options.reduced_motion)

    add("metadata_image_size", options.metadata_image_size)
    add("metadata_page_title", options.metadata_page_title)
    add("metadata_content", options.metadata_content)
    add("metadata_http_response_status_code", options.metadata_http_status_code)
    add("metadata_http_response_status_headers", options.metadata_http_headers)

    add("capture_beyond_viewport", options.capture_beyond_viewport)
    add("full_page", options.full_page)
    add("full_page_scroll", options.full_page_scroll)
    add("full_page_algorithm", options.full_page_algorithm or "default")
    add("image_quality", options.image_quality)

    if options.selector:
        add("selector", options.selector)
    if options.scroll_into_view:
        add("scroll_into_view", options.scroll_into_view)
    add("hide_selector", options.hide_selectors)

    for key, value in options.extra.items():
        add(str(key), value)
    return params


def _int_header(headers: httpx.Headers, name: str) -> int:
    try:
        return int(headers.get(name) or 0)
    except ValueError:
        return 0


def extract_readable_text(html: str) -> str | None:
    extracted = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=True,
    )
    if not extracted:
        return None
    return extracted.strip() or None


class CaptureService:
    def __init__(
        self,
        storage: BlobStore,
        *,
        api_key: str,
        origin: str,
        timeout_s: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.storage = storage
        self.api_key = api_key
        self.origin = origin.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_s,
            follow_redirects=True,
            transport=self._transport,
        )

    async def take_screenshot(self, options: CaptureOptions, week_number: str | None = None) -> CaptureResult:
        week = normalize_week(week_number) if week_number else current_week_number()
        ref = locate(options.url, week, options.run_id)
        params = build_capture_params(self.api_key, options)

        started = time.monotonic()
        async with self._client() as client:
            try:
                resp = await client.get(f"{self.origin}/take", params=params)
            except httpx.HTTPError as exc:
                CAPTURE_ATTEMPTS_TOTAL.labels(status_class="transport_error").inc()
                raise CaptureServiceError(f"Screenshot failed: {exc}") from exc
            finally:
                CAPTURE_LATENCY_SECONDS.observe(time.monotonic() - started)

            if resp.status_code >= 400:
                CAPTURE_ATTEMPTS_TOTAL.labels(status_class=f"{resp.status_code // 100}xx").inc()
                raise CaptureServiceError(f"Screenshot failed: {resp.text[:500]}")
            CAPTURE_ATTEMPTS_TOTAL.labels(status_class="2xx").inc()

            image = resp.content
            content_type = resp.headers.get("content-type") or "image/jpeg"
            raw_title = resp.headers.get(HEADER_PAGE_TITLE)
            metadata = CaptureMetadata(
                image_width=_int_header(resp.headers, HEADER_IMAGE_WIDTH),
                image_height=_int_header(resp.headers, HEADER_IMAGE_HEIGHT),
                page_title=unquote(raw_title) if raw_title else None,
            )
            blob_meta = {
                "sourceUrl": options.url,
                "fetchedAt": datetime.now(timezone.utc).isoformat(),
                "screenshotService": self.origin,
                "options": json.dumps(options.model_dump(mode="json", exclude={"url", "run_id"})),
                "imageWidth": metadata.image_width,
                "imageHeight": metadata.image_height,
                "pageTitle": metadata.page_title,
                "weekNumber": week,
                "runId": options.run_id,
            }

            screenshot_path = await self.storage.put(
                ref.screenshot_path, image, {**blob_meta, "contentType": content_type}
            )
            logger.info("Stored screenshot for %s at %s (%d bytes)", options.url, screenshot_path, len(image))

            content_path = None
            content_url = resp.headers.get(HEADER_CONTENT_URL)
            if content_url:
                content_path = await self._store_content(client, content_url, ref.content_path, blob_meta)

        return CaptureResult(
            paths=CapturePaths(screenshot=screenshot_path, content=content_path),
            metadata=metadata,
            size=len(image),
            content_type=content_type,
            week_number=week,
        )

    async def _store_content(
        self,
        client: httpx.AsyncClient,
        content_url: str,
        content_path: str,
        blob_meta: dict[str, Any],
    ) -> str | None:
        # Text extraction is best-effort: the screenshot is already stored.
        try:
            resp = await client.get(content_url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Content download failed for %s: %s", blob_meta["sourceUrl"], exc)
            return None

        text = extract_readable_text(resp.text)
        if text is None:
            logger.warning("No readable text extracted for %s", blob_meta["sourceUrl"])
            return None
        return await self.storage.put(
            content_path,
            text,
            {**blob_meta, "sourceUrl": content_url, "contentType": "text/plain"},
        )

    async def get_screenshot(self, url_hash: str, week_number: str, run_id: str):
        return await self.storage.get(SnapshotRef.from_hash(url_hash, week_number, run_id).screenshot_path)

    async def get_content(self, url_hash: str, week_number: str, run_id: str):
        return await self.storage.get(SnapshotRef.from_hash(url_hash, week_number, run_id).content_path)
