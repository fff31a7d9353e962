from pathlib import Path
from . import config
from .errors import StorageError

def _root() -> Path:
    return Path(config.PUBLIC_DIR).resolve()

def resolve_path(key: str) -> Path:
    root = _root()
    path = (root / key.lstrip("/")).resolve()
    if path != root and root not in path.parents:
        raise StorageError("Invalid document path", key)
    return path

def put_bytes(key: str, data: bytes):
    path = resolve_path(key)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)

def get_bytes(key: str) -> bytes:
    path = resolve_path(key)
    if not path.is_file():
        raise StorageError(f"Document not found: {Path(key).name}", key)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise StorageError(f"Document unreadable: {Path(key).name}", str(exc))

def delete_object(key: str):
    path = resolve_path(key)
    path.unlink(missing_ok=True)
