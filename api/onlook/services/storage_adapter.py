from __future__ import annotations

from ..core.config import settings

# Lazy import backends

def _backend():
    if settings.storage_backend == "local":
        from . import storage_local as backend
        return backend
    if settings.storage_backend in ("s3", "r2") or settings.r2_access_key_id:
        from . import storage_r2 as backend
        return backend
    # Fallback to local
    from . import storage_local as backend
    return backend


def backend_name() -> str:
    return _backend().__name__.rsplit("_", 1)[-1]


def put_object(key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
    """Store ``data`` under ``key``; raises ``StorageException`` if the key exists."""
    return _backend().put_object(key, data, content_type)


def public_url(key: str) -> str:
    return _backend().public_url(key)
