"""Authentication gate for protected routes.

A request passes through an ordered list of guards before the handler runs.
Each guard either raises or fills in part of the ``RequestContext``:

1. ``bearer_credential`` pulls the token out of ``Authorization: Bearer``.
2. ``session_token`` checks the token's signature and expiry.
3. ``account_liveness`` re-reads the account. A signed, unexpired token for
   an account that no longer exists is refused here; this is what makes the
   stateless token revocable.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import anyio
from fastapi import Request

from chatapi.core.errors import Unauthorized
from chatapi.services import accounts
from chatapi.services.tokens import session_tokens


@dataclass
class RequestContext:
    headers: Any = None
    token: Optional[str] = None
    account_id: Optional[str] = None
    account: Optional[Dict[str, Any]] = None
    annotations: Dict[str, Any] = field(default_factory=dict)


Guard = Callable[[RequestContext], None]


def extract_bearer_token(auth_header: Optional[str]) -> str:
    if not auth_header:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid Authorization header")
    return token.strip()


def bearer_credential(ctx: RequestContext) -> None:
    headers = ctx.headers or {}
    ctx.token = extract_bearer_token(headers.get("authorization"))


def session_token(ctx: RequestContext) -> None:
    if not ctx.token:
        raise Unauthorized("Missing bearer token")
    ctx.account_id = session_tokens.verify(ctx.token)


def account_liveness(ctx: RequestContext) -> None:
    acct = accounts.get_account(ctx.account_id or "")
    if not acct:
        raise Unauthorized("Account no longer exists")
    ctx.account = acct


class GuardPipeline:
    def __init__(self, *guards: Guard):
        self.guards: List[Guard] = list(guards)

    def run(self, ctx: RequestContext) -> RequestContext:
        for guard in self.guards:
            guard(ctx)
        return ctx

    async def __call__(self, request: Request) -> RequestContext:
        ctx = RequestContext(headers=request.headers)
        # The liveness guard reads the account store; keep it off the event loop.
        ctx = await anyio.to_thread.run_sync(self.run, ctx)
        request.state.account_id = ctx.account_id
        return ctx


token_pipeline = GuardPipeline(session_token, account_liveness)
require_account = GuardPipeline(bearer_credential, *token_pipeline.guards)


def authenticate_token(token: Optional[str]) -> RequestContext:
    """Run the token guards for transports that cannot send headers (WebSocket query string)."""
    return token_pipeline.run(RequestContext(token=token))
