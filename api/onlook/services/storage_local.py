from __future__ import annotations

import pathlib

from ..core.config import settings
from ..models.exceptions import StorageException


def _ensure_dir(path: str) -> None:
    pathlib.Path(path).parent.mkdir(parents=True, exist_ok=True)


def put_object(key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
    base = pathlib.Path(settings.local_storage_dir)
    dest = base / key
    _ensure_dir(str(dest))
    # "x" mode: existing objects are never overwritten
    try:
        with open(dest, "xb") as f:
            f.write(data)
    except FileExistsError:
        raise StorageException("put", key=key, storage_backend="local", details={"reason": "object_exists"})


def public_url(key: str) -> str:
    # Local dev: serve via /static/ route
    return f"{settings.service_base_url}/static/{key}"
