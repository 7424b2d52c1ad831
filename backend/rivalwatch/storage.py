"""Blob store for snapshot bytes.

Paths always come from `rivalwatch.paths.locate`; the store itself knows
nothing about URLs or weeks. Objects are immutable by convention: a path is
written once by the capture step and only read afterwards.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_META_SUFFIX = ".meta.json"


@dataclass
class BlobObject:
    path: str
    data: bytes
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return str(self.metadata.get("contentType") or "application/octet-stream")

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes | str, metadata: dict[str, Any] | None = None) -> str: ...

    async def get(self, path: str) -> BlobObject | None: ...


class LocalBlobStore:
    """Filesystem blob store with a JSON metadata sidecar per object."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Blob path escapes store root: {path!r}")
        return target

    def _write(self, path: str, data: bytes, metadata: dict[str, Any]) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)
        target.with_name(target.name + _META_SUFFIX).write_text(
            json.dumps(metadata, ensure_ascii=False, default=str), encoding="utf-8"
        )

    def _read(self, path: str) -> BlobObject | None:
        target = self._resolve(path)
        if not target.is_file():
            return None
        meta_file = target.with_name(target.name + _META_SUFFIX)
        metadata: dict[str, Any] = {}
        if meta_file.is_file():
            try:
                metadata = json.loads(meta_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                logger.warning("Corrupt blob metadata for %s: %s", path, exc)
        return BlobObject(path=path, data=target.read_bytes(), metadata=metadata)

    async def put(self, path: str, data: bytes | str, metadata: dict[str, Any] | None = None) -> str:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        await asyncio.to_thread(self._write, path, payload, dict(metadata or {}))
        return path

    async def get(self, path: str) -> BlobObject | None:
        return await asyncio.to_thread(self._read, path)
