"""Snapshot addressing: where a capture's image and text live in the blob store.

The same derivation is used by the capture step (writes), the diff engine
and the HTTP retrieval endpoints (reads). Any divergence makes lookups
silently miss, so every caller goes through `locate`.
"""
from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone

URL_HASH_LENGTH = 32
MAX_WEEK = 53


def generate_path_hash(url: str) -> str:
    """First 32 hex chars of the SHA-256 digest of `url`."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:URL_HASH_LENGTH]


def normalize_week(week_number: str | int) -> str:
    raw = str(week_number).strip()
    if not raw.isdigit():
        raise ValueError(f"Invalid week number: {week_number!r}")
    value = int(raw)
    if not 1 <= value <= MAX_WEEK:
        raise ValueError(f"Week number out of range: {week_number!r}")
    return f"{value:02d}"


def current_week_number(today: date | datetime | None = None) -> str:
    """Sunday-based week of year, zero-padded ("01".."53").

    A leap year starting on Saturday ends on a one-day 54th week; that day
    folds into week 53.
    """
    if today is None:
        today = datetime.now(timezone.utc)
    if isinstance(today, datetime):
        today = today.date()
    first_day = date(today.year, 1, 1)
    past_days = (today - first_day).days
    first_weekday = (first_day.weekday() + 1) % 7  # Sunday = 0
    week = math.ceil((past_days + first_weekday + 1) / 7)
    return f"{min(week, MAX_WEEK):02d}"


@dataclass(frozen=True)
class SnapshotRef:
    url_hash: str
    week_number: str
    run_id: str

    @property
    def screenshot_path(self) -> str:
        return f"screenshot/{self.url_hash}/{self.week_number}/{self.run_id}"

    @property
    def content_path(self) -> str:
        return f"content/{self.url_hash}/{self.week_number}/{self.run_id}"

    @classmethod
    def from_hash(cls, url_hash: str, week_number: str | int, run_id: str) -> "SnapshotRef":
        if len(url_hash) != URL_HASH_LENGTH or any(c not in "0123456789abcdef" for c in url_hash):
            raise ValueError(f"Invalid url hash: {url_hash!r}")
        return cls(url_hash=url_hash, week_number=normalize_week(week_number), run_id=str(run_id))


def locate(url: str, week_number: str | int, run_id: str) -> SnapshotRef:
    """Pure, deterministic address of the capture of `url` at (week, run)."""
    return SnapshotRef(
        url_hash=generate_path_hash(url),
        week_number=normalize_week(week_number),
        run_id=str(run_id),
    )
