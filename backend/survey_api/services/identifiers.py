# survey_api/services/identifiers.py
from __future__ import annotations

import re
import secrets
import string
import time
from datetime import datetime, timezone

TOKEN_LENGTH = 5
TOKEN_ALPHABET = string.ascii_letters  # a-z + A-Z, no digits

ZERO_ID = "0" * 24

_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def generate_token() -> str:
    """Public survey token. Not unique by construction; the store enforces that."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def new_id() -> str:
    """
    Opaque 24-hex id: 4-byte unix timestamp followed by 8 random bytes,
    so ids created later sort after ids created earlier (to the second).
    """
    ts = int(time.time()).to_bytes(4, "big")
    return (ts + secrets.token_bytes(8)).hex()


def is_valid_id(value: str | None) -> bool:
    return bool(value) and bool(_ID_RE.match(value))


def parse_id(value: str | None) -> str | None:
    """Normalized id, or None when the value is not a 24-hex string."""
    if not is_valid_id(value):
        return None
    return value.lower()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
