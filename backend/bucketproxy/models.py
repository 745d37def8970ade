"""
Shared Pydantic models describing request/response payloads.
"""
from typing import List, Optional

from pydantic import BaseModel


class LoginRequest(BaseModel):
    password: Optional[str] = None


class LoginResponse(BaseModel):
    session_token: str


class BucketEntry(BaseModel):
    name: str
    display_name: str


class BucketListResponse(BaseModel):
    buckets: List[BucketEntry]
    authenticated: bool


class ObjectEntry(BaseModel):
    key: str
    size: int
    last_modified: Optional[str] = None
    etag: str
    is_directory: bool = False


class ObjectListing(BaseModel):
    entries: List[ObjectEntry]
    next_continuation_token: Optional[str] = None


class FileListResponse(BaseModel):
    data: ObjectListing
    bucket_display_name: str


class KeyPairRequest(BaseModel):
    source_key: Optional[str] = None
    target_key: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
    key: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    rate_limit_backend: str
