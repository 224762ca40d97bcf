from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from chatapi.auth.deps import RequestContext, require_account
from chatapi.core.errors import Conflict, NotFound, RateLimited, Unauthorized
from chatapi.core.normalize import client_ip_from_request
from chatapi.models import AccountOut, LoginReq, LoginResp, RegisterReq, StatusResp, TokenResp, VerifyOtpReq
from chatapi.services import accounts
from chatapi.services.audit import audit_event
from chatapi.services.mfa import OtpResult, second_factor
from chatapi.services.rate_limit import (
    attempt_identity,
    clear_login_attempts,
    login_gate,
    login_user_gate,
    otp_verify_gate,
    otp_verify_user_gate,
)
from chatapi.services.tokens import session_tokens

router = APIRouter(prefix="/auth", tags=["auth"])

OTP_FAILED = "Invalid or expired code"

def _username(raw: str) -> str:
    return (raw or "").strip().lower()

@router.post("/register", response_model=TokenResp)
def register(body: RegisterReq, req: Request):
    try:
        acct = accounts.create_account(body.username, body.email, body.password)
    except Conflict as exc:
        audit_event("register", _username(body.username), req, outcome="failure", reason=exc.detail)
        raise
    token = session_tokens.issue(acct["account_id"])
    audit_event("register", acct["account_id"], req, outcome="success", username=acct["username"])
    return TokenResp(token=token, username=acct["username"])

@router.post("/login", response_model=LoginResp)
def login(body: LoginReq, req: Request):
    username = _username(body.username)
    try:
        login_gate.check_or_429(attempt_identity(username, client_ip_from_request(req)))
        login_user_gate.check_or_429(username)
    except RateLimited:
        audit_event("login", username, req, outcome="failure", reason="rate_limited")
        raise
    try:
        acct = accounts.verify_credentials(username, body.password)
    except Unauthorized:
        audit_event("login", username, req, outcome="failure", reason="bad_credentials")
        raise

    second_factor.issue(acct["account_id"], acct["email"])
    audit_event("login", acct["account_id"], req, outcome="success", step="otp_sent")
    return LoginResp()

@router.post("/verify-otp", response_model=TokenResp)
def verify_otp(body: VerifyOtpReq, req: Request):
    username = _username(body.username)
    client_ip = client_ip_from_request(req)
    try:
        otp_verify_gate.check_or_429(attempt_identity(username, client_ip))
        otp_verify_user_gate.check_or_429(username)
    except RateLimited:
        audit_event("otp_verify", username, req, outcome="failure", reason="rate_limited")
        raise
    try:
        acct = accounts.get_account_by_username(username)
    except NotFound:
        audit_event("otp_verify", username, req, outcome="failure", reason="unknown_account")
        raise Unauthorized(OTP_FAILED)

    result = second_factor.verify(acct["account_id"], body.otp)
    if result is not OtpResult.SUCCESS:
        # Expired and wrong codes look the same to the client.
        audit_event("otp_verify", acct["account_id"], req, outcome="failure", reason=result.value)
        raise Unauthorized(OTP_FAILED)

    clear_login_attempts(username, client_ip)
    token = session_tokens.issue(acct["account_id"])
    audit_event("otp_verify", acct["account_id"], req, outcome="success")
    return TokenResp(token=token, username=acct["username"])

@router.get("/me", response_model=AccountOut)
async def me(ctx: RequestContext = Depends(require_account)):
    return AccountOut(**accounts.account_summary(ctx.account))

@router.delete("/me", response_model=StatusResp)
def close_account(req: Request, ctx: RequestContext = Depends(require_account)):
    accounts.delete_account(ctx.account_id)
    audit_event("account_closed", ctx.account_id, req, outcome="success")
    return StatusResp()
