from __future__ import annotations

import re

from .errors import ValidationFailed
from .settings import S

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")

def client_ip_from_request(req) -> str:
    # The header is client-controlled unless a proxy we run overwrites it.
    xff = req.headers.get("x-forwarded-for") if S.trust_forwarded_for else None
    if xff:
        return xff.split(",")[0].strip()
    return req.client.host if getattr(req, "client", None) else "0.0.0.0"

def normalize_email(s: str) -> str:
    s = (s or "").strip().lower()
    if "@" not in s or s.startswith("@") or s.endswith("@") or len(s) > 254:
        raise ValidationFailed("email", "Invalid email")
    return s

def normalize_username(s: str) -> str:
    s = (s or "").strip().lower()
    if not _USERNAME_RE.match(s):
        raise ValidationFailed("username", "Username must be 3-32 letters, digits, '.', '_' or '-'")
    return s
