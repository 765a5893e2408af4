# core/utils.py

import secrets
from datetime import datetime, timezone

# No 0/O, 1/l/I: passwords are read out over the phone
TEMP_PASSWORD_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"


def sanitize(data: dict) -> dict:
    """
    Sanitize dictionary data:
    - Empty strings → None
    - Preserve booleans, None values
    - Strip string whitespace
    Strings are never coerced to numbers (phones, apartment numbers and
    passwords must survive as typed).
    """
    clean = {}

    for k, v in data.items():
        if isinstance(v, str):
            stripped = v.strip()
            clean[k] = stripped if stripped else None
            continue

        # For other types, keep as-is
        clean[k] = v

    return clean


def generate_temp_password(length: int = 12) -> str:
    return "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


