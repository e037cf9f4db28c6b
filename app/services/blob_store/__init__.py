"""Blob storage for place photos."""

from .service import BlobStore, LocalBlobStore

__all__ = ["BlobStore", "LocalBlobStore"]
