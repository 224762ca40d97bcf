from __future__ import annotations

import secrets
from enum import Enum
from typing import Callable, Optional

from chatapi.core.aws import ses
from chatapi.core.crypto import sha256_str
from chatapi.core.settings import S
from chatapi.services.audit import audit_event
from chatapi.services.secret_store import SecretStore, get_secret_store

Delivery = Callable[[str, str], None]


class OtpResult(str, Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    EXPIRED = "expired"


def gen_numeric_code(n_digits: int = 6) -> str:
    return str(secrets.randbelow(10**n_digits)).zfill(n_digits)

def otp_key(account_id: str) -> str:
    return f"otp:{account_id}"

def send_email_code(to_email: str, code: str) -> None:
    if not ses:
        if S.otp_console_delivery:
            audit_event("otp_console_delivery", to_email, outcome="info", code=code)
            return
        raise RuntimeError("SES not configured")
    subject = "Your login code"
    body = (
        f"Your security code is: {code}\n\n"
        f"This code expires in {S.otp_ttl_seconds // 60} minutes. "
        "If you did not request this, ignore this email."
    )
    ses.send_email(
        Source=S.ses_from_email,
        Destination={"ToAddresses": [to_email]},
        Message={"Subject": {"Data": subject[:120]}, "Body": {"Text": {"Data": body[:8000]}}},
    )


class SecondFactorIssuer:
    """Issues and checks the single live one-time code of each account."""

    def __init__(
        self,
        store: Optional[SecretStore] = None,
        deliver: Optional[Delivery] = None,
        ttl_seconds: Optional[int] = None,
        digits: Optional[int] = None,
    ):
        self._store = store
        self._deliver = deliver or send_email_code
        self.ttl_seconds = ttl_seconds or S.otp_ttl_seconds
        self.digits = digits or S.otp_digits

    @property
    def store(self) -> SecretStore:
        return self._store if self._store is not None else get_secret_store()

    def issue(self, account_id: str, destination: str) -> str:
        code = gen_numeric_code(self.digits)
        # Overwrites any earlier code; only the newest one can ever verify.
        self.store.set_with_expiry(otp_key(account_id), sha256_str(code), self.ttl_seconds)
        try:
            self._deliver(destination, code)
        except Exception as exc:
            audit_event("otp_delivery", account_id, outcome="failure", reason=f"{type(exc).__name__}: {exc}")
        else:
            audit_event("otp_delivery", account_id, outcome="success")
        return code

    def verify(self, account_id: str, presented: str) -> OtpResult:
        key = otp_key(account_id)
        stored = self.store.get(key)
        if stored is None:
            return OtpResult.EXPIRED
        digest = sha256_str((presented or "").strip())
        if digest != stored:
            return OtpResult.INVALID
        if not self.store.consume_if_equal(key, digest):
            # Lost a race with another verification or with expiry.
            return OtpResult.EXPIRED
        return OtpResult.SUCCESS


second_factor = SecondFactorIssuer()
