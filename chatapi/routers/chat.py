from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import anyio
from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from chatapi.auth.deps import RequestContext, authenticate_token, extract_bearer_token, require_account
from chatapi.core.settings import S
from chatapi.models import ConversationOut, CreateGroupReq, CreatePrivateReq, MessageOut, SendMessageReq, UserOut
from chatapi.services import accounts, conversations
from chatapi.services.audit import audit_event
from chatapi.services.broker import Subscription, SubscriptionClosed
from chatapi.services.subscriptions import SubscriptionManager

router = APIRouter(prefix="/chat", tags=["chat"])

# Close code sent to sockets that fail authentication.
WS_UNAUTHORIZED = 4401


def _sse_pack(data: dict, event: str = "message") -> str:
    return f"event: {event}\ndata: {json.dumps(data, separators=(',', ':'), default=int)}\n\n"


# -------------------------
# Directory
# -------------------------
@router.get("/users", response_model=List[UserOut])
def list_users(ctx: RequestContext = Depends(require_account)):
    return [UserOut(**a) for a in accounts.list_accounts(exclude_id=ctx.account_id)]


@router.post("/conversations/private", response_model=ConversationOut)
def create_private_chat(inp: CreatePrivateReq, req: Request, ctx: RequestContext = Depends(require_account)):
    convo = conversations.create_private(ctx.account_id, inp.other_account_id)
    audit_event(
        "chat_private_opened",
        ctx.account_id,
        req,
        outcome="success",
        conversation_id=convo["conversation_id"],
    )
    return ConversationOut(**convo)


@router.post("/conversations/group", response_model=ConversationOut)
def create_group(inp: CreateGroupReq, req: Request, ctx: RequestContext = Depends(require_account)):
    convo = conversations.create_group(ctx.account_id, inp.name, inp.member_ids)
    audit_event(
        "chat_group_created",
        ctx.account_id,
        req,
        outcome="success",
        conversation_id=convo["conversation_id"],
        participant_count=len(convo["participant_ids"]),
    )
    return ConversationOut(**convo)


@router.get("/conversations", response_model=List[ConversationOut])
def list_my_chats(ctx: RequestContext = Depends(require_account)):
    return [ConversationOut(**c) for c in conversations.list_for(ctx.account_id)]


# -------------------------
# Messages
# -------------------------
@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut)
def send_message(
    conversation_id: str,
    inp: SendMessageReq,
    ctx: RequestContext = Depends(require_account),
):
    message = conversations.send_message(
        conversation_id,
        ctx.account_id,
        inp.content,
        kind=inp.kind,
        attachment=inp.attachment,
        sender_username=ctx.account.get("username"),
    )
    return MessageOut(**message)


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageOut])
def get_history(conversation_id: str, ctx: RequestContext = Depends(require_account)):
    return [MessageOut(**m) for m in conversations.history(conversation_id, ctx.account_id)]


# -------------------------
# Live delivery (SSE + WebSocket)
# -------------------------
@router.get("/conversations/{conversation_id}/stream")
async def conversation_stream(
    conversation_id: str,
    request: Request,
    ctx: RequestContext = Depends(require_account),
):
    await anyio.to_thread.run_sync(conversations.require_participant, ctx.account_id, conversation_id)

    async def gen():
        with SubscriptionManager(owner=ctx.account_id) as manager:
            sub = manager.attach(conversation_id)
            yield ": stream-open\n\n"
            while True:
                try:
                    msg = await asyncio.wait_for(sub.get(), timeout=S.stream_ping_seconds)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        return
                    yield ": ping\n\n"
                    continue
                except SubscriptionClosed:
                    return
                yield _sse_pack(msg)

    return StreamingResponse(gen(), media_type="text/event-stream")


def _socket_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    auth = websocket.headers.get("authorization")
    return extract_bearer_token(auth) if auth else None


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, token: Optional[str] = None):
    """One socket per client; each subscribed conversation is one broker subscription.

    Frames in: ``{"action": "subscribe" | "unsubscribe", "conversation_id": ...}`` or
    ``{"action": "ping"}``. Frames out: ``subscribed``, ``unsubscribed``,
    ``message``, ``dropped``, ``error`` and ``pong``.
    """
    try:
        ctx = await anyio.to_thread.run_sync(authenticate_token, _socket_token(websocket, token))
    except HTTPException as exc:
        await websocket.close(code=WS_UNAUTHORIZED, reason=str(exc.detail))
        return

    await websocket.accept()
    account_id = ctx.account_id
    await anyio.to_thread.run_sync(accounts.set_online, account_id, True)

    send_lock = asyncio.Lock()
    pumps: Dict[str, asyncio.Task] = {}
    manager = SubscriptionManager(owner=account_id)

    async def send(payload: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(payload)

    async def pump(topic: str, sub: Subscription) -> None:
        try:
            async for msg in sub:
                await send({"type": "message", "conversation_id": topic, "message": msg})
            if sub.overflowed:
                await send({"type": "dropped", "conversation_id": topic})
        except (WebSocketDisconnect, RuntimeError):
            # Socket went away mid-send; the receive loop below does the cleanup.
            return

    async def subscribe(cid: str) -> None:
        try:
            await anyio.to_thread.run_sync(conversations.require_participant, account_id, cid)
        except HTTPException as exc:
            await send({"type": "error", "conversation_id": cid, "status": exc.status_code, "detail": exc.detail})
            return
        task = pumps.get(cid)
        if task is None or task.done():
            pumps[cid] = asyncio.create_task(pump(cid, manager.attach(cid)))
        await send({"type": "subscribed", "conversation_id": cid})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                frame = None
            if not isinstance(frame, dict):
                await send({"type": "error", "detail": "Frames must be JSON objects"})
                continue

            action = frame.get("action")
            cid = str(frame.get("conversation_id") or "")
            if action == "ping":
                await send({"type": "pong"})
            elif action in ("subscribe", "unsubscribe") and not cid:
                await send({"type": "error", "detail": "conversation_id is required"})
            elif action == "subscribe":
                await subscribe(cid)
            elif action == "unsubscribe":
                manager.detach(cid)
                pumps.pop(cid, None)
                await send({"type": "unsubscribed", "conversation_id": cid})
            else:
                await send({"type": "error", "detail": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        pass
    finally:
        manager.detach_all()
        for task in pumps.values():
            task.cancel()
        # Still runs when the connection task itself is being cancelled.
        with anyio.CancelScope(shield=True):
            await anyio.to_thread.run_sync(accounts.set_online, account_id, False)
