"""Snapshot retrieval by url hash, week and run."""
from __future__ import annotations

import base64
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from starlette.responses import JSONResponse, Response

from rivalwatch.api.deps import get_services
from rivalwatch.services import Services

router = APIRouter(prefix="/api/v1", tags=["snapshots"])


@router.get("/content/{url_hash}/{week_number}/{run_id}")
async def get_content(
    url_hash: str,
    week_number: str,
    run_id: str,
    services: Services = Depends(get_services),
) -> Response:
    try:
        blob = await services.capture.get_content(url_hash, week_number, run_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if blob is None:
        raise HTTPException(status_code=404, detail="Content not found")
    return Response(content=blob.data, media_type="text/plain; charset=utf-8")


@router.get("/screenshot/{url_hash}/{week_number}/{run_id}")
async def get_screenshot(
    url_hash: str,
    week_number: str,
    run_id: str,
    format: Literal["binary", "base64", "json"] = "binary",
    services: Services = Depends(get_services),
) -> Response:
    try:
        blob = await services.capture.get_screenshot(url_hash, week_number, run_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if blob is None:
        raise HTTPException(status_code=404, detail="Screenshot not found")

    if format == "base64":
        return Response(content=base64.b64encode(blob.data), media_type="text/plain")
    if format == "json":
        return JSONResponse(
            {
                "path": blob.path,
                "contentType": blob.content_type,
                "size": len(blob.data),
                "metadata": blob.metadata,
                "data": base64.b64encode(blob.data).decode("ascii"),
            }
        )
    return Response(content=blob.data, media_type=blob.content_type)
