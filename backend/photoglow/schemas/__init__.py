"""Pydantic v2 schemas package."""

from photoglow.schemas.job import JobRead, KieCallback
from photoglow.schemas.storage import SignedUploadRequest, SignedUploadResponse

__all__ = [
    "JobRead",
    "KieCallback",
    "SignedUploadRequest",
    "SignedUploadResponse",
]
