from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

from .settings import S

_SCHEME = "pbkdf2_sha256"

def sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()

def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

def b64url_decode(s: str) -> bytes:
    s = s.strip()
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))

def hash_password(password: str, iterations: int = 0) -> str:
    iterations = iterations or S.password_hash_iterations
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{_SCHEME}${iterations}${b64url(salt)}${b64url(dk)}"

def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iters, salt_b64, dk_b64 = encoded.split("$", 3)
        iterations = int(iters)
    except (AttributeError, ValueError):
        return False
    if scheme != _SCHEME:
        return False
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), b64url_decode(salt_b64), iterations)
    return hmac.compare_digest(dk, b64url_decode(dk_b64))
