"""
FastAPI router for the management API under ``/api``.

Bucket path parameters accept either the alias or the real identifier.
Mutating routes require a session; every route here is rate limited.
"""
from __future__ import annotations

from typing import Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool

from . import models
from .auth import SESSION_COOKIE, optional_session, require_session, verify_password
from .ratelimit import rate_limited
from .storage import StorageGateway
from .validation import guess_content_type, is_valid_key, sanitize_key

router = APIRouter(prefix="/api", tags=["management"])

api_limit = Depends(rate_limited("api"))
auth_limit = Depends(rate_limited("auth"))


def get_storage(request: Request) -> StorageGateway:
    return request.app.state.storage


def require_bucket(gateway: StorageGateway, bucket_name: str) -> None:
    if not gateway.registry.is_valid(bucket_name):
        raise HTTPException(status_code=400, detail="Invalid bucket")


def require_key(key: Optional[str]) -> str:
    if not key:
        raise HTTPException(status_code=400, detail="Key is required")
    if not is_valid_key(key):
        raise HTTPException(status_code=400, detail="Invalid key")
    return key


def require_key_pair(payload: Optional[models.KeyPairRequest]) -> Tuple[str, str]:
    if payload is None or not payload.source_key or not payload.target_key:
        raise HTTPException(status_code=400, detail="source_key and target_key are required")
    return require_key(payload.source_key), require_key(payload.target_key)


@router.post("/auth/login", response_model=models.LoginResponse, dependencies=[auth_limit])
def login(
    request: Request,
    response: Response,
    payload: Optional[models.LoginRequest] = None,
) -> models.LoginResponse:
    """Exchange the shared password for a session token (also set as a cookie)."""
    password = payload.password if payload else None
    if not password:
        raise HTTPException(status_code=400, detail="Password required")

    settings = request.app.state.settings
    if not verify_password(password, settings.private_token):
        raise HTTPException(status_code=401, detail="Invalid password")

    token = request.app.state.sessions.create()
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
    return models.LoginResponse(session_token=token)


@router.get("/buckets", response_model=models.BucketListResponse, dependencies=[api_limit])
def list_buckets(
    gateway: StorageGateway = Depends(get_storage),
    authenticated: bool = Depends(optional_session),
) -> models.BucketListResponse:
    buckets = [
        models.BucketEntry(name=real, display_name=display)
        for real, display in gateway.registry.entries()
    ]
    return models.BucketListResponse(buckets=buckets, authenticated=authenticated)


@router.get(
    "/buckets/{bucket_name}/files",
    response_model=models.FileListResponse,
    dependencies=[api_limit],
)
async def list_files(
    bucket_name: str,
    prefix: str = "",
    continuation_token: Optional[str] = None,
    gateway: StorageGateway = Depends(get_storage),
) -> models.FileListResponse:
    """List one page of a bucket, folding ``/``-delimited prefixes into directories."""
    require_bucket(gateway, bucket_name)
    listing = await run_in_threadpool(
        gateway.list_objects, bucket_name, prefix, continuation_token
    )
    return models.FileListResponse(
        data=listing,
        bucket_display_name=gateway.registry.display_name(bucket_name),
    )


@router.post(
    "/buckets/{bucket_name}/upload",
    response_model=models.MessageResponse,
    dependencies=[Depends(require_session), api_limit],
)
async def upload_file(
    bucket_name: str,
    file: Optional[UploadFile] = File(default=None),
    key: Optional[str] = Form(default=None),
    gateway: StorageGateway = Depends(get_storage),
) -> models.MessageResponse:
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    object_key = require_key(sanitize_key(key) if key else key)
    require_bucket(gateway, bucket_name)

    content_type = file.content_type or guess_content_type(object_key)
    try:
        await run_in_threadpool(
            gateway.put_object, bucket_name, object_key, file.file, content_type
        )
    finally:
        await file.close()
    return models.MessageResponse(message="File uploaded successfully", key=object_key)


@router.delete(
    "/buckets/{bucket_name}/files/{file_key:path}",
    response_model=models.MessageResponse,
    dependencies=[Depends(require_session), api_limit],
)
async def delete_file(
    bucket_name: str,
    file_key: str,
    gateway: StorageGateway = Depends(get_storage),
) -> models.MessageResponse:
    # The transport has already percent-decoded the path, so ``file_key`` is
    # the literal object key.
    require_bucket(gateway, bucket_name)
    object_key = require_key(file_key)
    await run_in_threadpool(gateway.delete_object, bucket_name, object_key)
    return models.MessageResponse(message="File deleted successfully", key=object_key)


@router.post(
    "/buckets/{bucket_name}/move",
    response_model=models.MessageResponse,
    dependencies=[Depends(require_session), api_limit],
)
async def move_file(
    bucket_name: str,
    payload: Optional[models.KeyPairRequest] = None,
    gateway: StorageGateway = Depends(get_storage),
) -> models.MessageResponse:
    """Copy then delete; a failure after the copy leaves both keys in place."""
    source_key, target_key = require_key_pair(payload)
    require_bucket(gateway, bucket_name)
    await run_in_threadpool(gateway.move_object, bucket_name, source_key, target_key)
    return models.MessageResponse(message="File moved successfully", key=target_key)


@router.post(
    "/buckets/{bucket_name}/copy",
    response_model=models.MessageResponse,
    dependencies=[Depends(require_session), api_limit],
)
async def copy_file(
    bucket_name: str,
    payload: Optional[models.KeyPairRequest] = None,
    gateway: StorageGateway = Depends(get_storage),
) -> models.MessageResponse:
    source_key, target_key = require_key_pair(payload)
    require_bucket(gateway, bucket_name)
    await run_in_threadpool(gateway.copy_object, bucket_name, source_key, target_key)
    return models.MessageResponse(message="File copied successfully", key=target_key)
