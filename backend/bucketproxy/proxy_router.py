"""
Public, unauthenticated read proxy: ``GET /{bucket}/{key}`` streams the object.

These routes are never rate limited; they are registered last so they only see
paths no other route claimed.
"""
from __future__ import annotations

from datetime import timezone
from email.utils import format_datetime
from typing import Dict

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .storage import ObjectNotFoundError, StorageGateway, StoredObject
from .validation import guess_content_type

router = APIRouter(tags=["public-proxy"])

CACHE_CONTROL = "public, max-age=31536000"


def _checked_gateway(request: Request, bucket_name: str, file_path: str) -> StorageGateway:
    if not file_path:
        raise HTTPException(status_code=400, detail="No file specified")
    gateway: StorageGateway = request.app.state.storage
    if not gateway.registry.is_valid(bucket_name):
        raise HTTPException(status_code=404, detail="Bucket not found")
    return gateway


def _object_headers(stored: StoredObject) -> Dict[str, str]:
    headers = {"Cache-Control": CACHE_CONTROL}
    if stored.content_length is not None:
        headers["Content-Length"] = str(stored.content_length)
    if stored.etag:
        headers["ETag"] = stored.etag
    if stored.last_modified is not None:
        headers["Last-Modified"] = format_datetime(
            stored.last_modified.astimezone(timezone.utc), usegmt=True
        )
    return headers


@router.get("/{bucket_name}/{file_path:path}", name="public_object_read")
async def public_object_read(bucket_name: str, file_path: str, request: Request):
    gateway = _checked_gateway(request, bucket_name, file_path)
    try:
        stored = await run_in_threadpool(gateway.get_object, bucket_name, file_path)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    if stored.body is None:
        raise HTTPException(status_code=404, detail="File not found")

    return StreamingResponse(
        stored.iter_chunks(),
        media_type=stored.content_type or guess_content_type(file_path),
        headers=_object_headers(stored),
        background=BackgroundTask(stored.close),
    )


@router.head("/{bucket_name}/{file_path:path}", name="public_object_head")
async def public_object_head(bucket_name: str, file_path: str, request: Request):
    gateway = _checked_gateway(request, bucket_name, file_path)
    try:
        stored = await run_in_threadpool(gateway.head_object, bucket_name, file_path)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    return Response(
        media_type=stored.content_type or guess_content_type(file_path),
        headers=_object_headers(stored),
    )
