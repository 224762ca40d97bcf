from __future__ import annotations

from typing import Optional

from chatapi.core.errors import RateLimited
from chatapi.core.settings import S
from chatapi.metrics import record_rate_limited
from chatapi.services.secret_store import SecretStore, get_secret_store

class RateGate:
    """Counts attempts per identity in a window that opens at the first attempt.

    The counter lives in the shared secret store so every instance handling an
    identity sees the same count. Rejected attempts are counted as well.
    """

    def __init__(
        self,
        name: str,
        max_attempts: int,
        window_seconds: int,
        store: Optional[SecretStore] = None,
        message: str = "Too many attempts. Try again later.",
    ):
        self.name = name
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.message = message
        self._store = store

    @property
    def store(self) -> SecretStore:
        return self._store if self._store is not None else get_secret_store()

    def key(self, identity: str) -> str:
        return f"rl#{self.name}:{identity}"

    def check(self, identity: str) -> bool:
        count = self.store.incr_with_expiry(self.key(identity), self.window_seconds)
        return count <= self.max_attempts

    def check_or_429(self, identity: str) -> None:
        if self.check(identity):
            return
        record_rate_limited(self.name)
        retry_after = self.store.ttl_remaining(self.key(identity)) or self.window_seconds
        raise RateLimited(self.message, retry_after=retry_after)

    def reset(self, identity: str) -> None:
        self.store.delete(self.key(identity))


def attempt_identity(username: str, client_ip: str) -> str:
    # Keyed by username and source so other addresses cannot use up a victim's attempts.
    return f"{username}:{client_ip}"


login_gate = RateGate(
    "login",
    max_attempts=S.login_max_attempts,
    window_seconds=S.login_window_seconds,
    message="Too many login attempts. Try again in 1 minute.",
)

otp_verify_gate = RateGate(
    "otp_verify",
    max_attempts=S.otp_verify_max_attempts,
    window_seconds=S.otp_verify_window_seconds,
    message="Too many code attempts. Wait and retry.",
)

# Username-only ceilings; rotating source addresses cannot get past these.
login_user_gate = RateGate(
    "login_user",
    max_attempts=S.login_user_max_attempts,
    window_seconds=S.login_window_seconds,
    message="Too many login attempts for this account. Try again in 1 minute.",
)

otp_verify_user_gate = RateGate(
    "otp_verify_user",
    max_attempts=S.otp_verify_user_max_attempts,
    window_seconds=S.otp_verify_window_seconds,
    message="Too many code attempts for this account. Request a new code later.",
)


def clear_login_attempts(username: str, client_ip: str) -> None:
    """Forget both steps' counters once an account completes its second factor."""
    identity = attempt_identity(username, client_ip)
    login_gate.reset(identity)
    otp_verify_gate.reset(identity)
    login_user_gate.reset(username)
    otp_verify_user_gate.reset(username)
