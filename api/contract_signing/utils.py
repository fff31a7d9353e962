import hashlib, json
from datetime import datetime, timezone
from itsdangerous import URLSafeTimedSerializer
from .config import SECRET_KEY, SESSION_MAX_AGE
from .errors import NotFound

MAX_ID = 2**63 - 1

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def make_token(payload: dict) -> str:
    s = URLSafeTimedSerializer(SECRET_KEY, salt="session")
    return s.dumps(payload)

def read_token(token: str, max_age: int = SESSION_MAX_AGE) -> dict:
    s = URLSafeTimedSerializer(SECRET_KEY, salt="session")
    return s.loads(token, max_age=max_age)

def parse_id(value, label: str) -> int:
    # ids travel as decimal strings; anything else cannot match a row
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise NotFound(f"{label} not found")
    # SQLite integers are signed 64-bit
    if parsed < 1 or parsed > MAX_ID:
        raise NotFound(f"{label} not found")
    return parsed

def id_str(value):
    return str(value) if value is not None else None

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value):
    # SQLite hands DateTime columns back without tzinfo; they are stored as UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

def iso(value):
    return as_utc(value).isoformat() if value else None
