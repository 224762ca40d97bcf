"""Conversations, participants and messages.

Records live in DynamoDB:

* ``Conversations`` keyed by ``conversation_id``. A private conversation's id
  is derived from the unordered pair of accounts, so a conditional put is
  enough to keep one conversation per pair even under concurrent creation.
* ``Participants`` keyed by ``(user_id, conversation_id)`` with ``GSI1`` on
  the conversation id.
* ``Messages`` keyed by ``(conversation_id, message_id)``. Message ids start
  with a zero-padded millisecond stamp that is strictly increasing within a
  process, so the sort key order is creation order.

``history`` is the durable, replayable channel. The broker is not.
"""
from __future__ import annotations

import threading
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from chatapi.core.crypto import sha256_str
from chatapi.core.errors import Forbidden, ValidationFailed, is_conditional_failure
from chatapi.core.settings import S
from chatapi.core.tables import T
from chatapi.core.time import now_ms
from chatapi.services import accounts
from chatapi.services.broker import broker

MESSAGE_KINDS = ("text", "code", "image")

_id_lock = threading.Lock()
_last_ms = 0


def new_id() -> str:
    return uuid.uuid4().hex


def _next_message_ms() -> int:
    global _last_ms
    with _id_lock:
        ms = max(now_ms(), _last_ms + 1)
        _last_ms = ms
        return ms


def private_conversation_id(a: str, b: str) -> str:
    return "dm_" + sha256_str("|".join(sorted((a, b))))[:32]


def get_conversation(conversation_id: str) -> Optional[Dict[str, Any]]:
    return T.conversations.get_item(Key={"conversation_id": conversation_id}).get("Item")


def get_participant(account_id: str, conversation_id: str) -> Optional[Dict[str, Any]]:
    return T.participants.get_item(Key={"user_id": account_id, "conversation_id": conversation_id}).get("Item")


def require_participant(account_id: str, conversation_id: str) -> Dict[str, Any]:
    item = get_participant(account_id, conversation_id)
    if not item:
        raise Forbidden("Not a participant of this conversation")
    return item


def _require_accounts(account_ids: Iterable[str], field: str) -> None:
    for aid in account_ids:
        if not accounts.get_account(aid):
            raise ValidationFailed(field, f"Unknown account: {aid}")


def _put_participants(conversation_id: str, account_ids: List[str], ts: int) -> None:
    with T.participants.batch_writer() as bw:
        for aid in account_ids:
            bw.put_item(
                Item={
                    "user_id": aid,
                    "conversation_id": conversation_id,
                    "joined_at": ts,
                    "GSI1PK": conversation_id,
                    "GSI1SK": aid,
                }
            )


def _put_conversation(item: Dict[str, Any]) -> bool:
    try:
        T.conversations.put_item(Item=item, ConditionExpression="attribute_not_exists(conversation_id)")
        return True
    except ClientError as exc:
        if is_conditional_failure(exc):
            return False
        raise


def create_private(account_id: str, other_id: str) -> Dict[str, Any]:
    if account_id == other_id:
        raise ValidationFailed("other_account_id", "Cannot start a private conversation with yourself")
    _require_accounts([other_id], "other_account_id")

    cid = private_conversation_id(account_id, other_id)
    ts = now_ms()
    item = {
        "conversation_id": cid,
        "is_group": False,
        "created_by": account_id,
        "created_at": ts,
        "last_activity_at": ts,
        "participant_ids": sorted((account_id, other_id)),
    }
    if not _put_conversation(item):
        existing = get_conversation(cid)
        if existing:
            # A prior call can stop between the conversation and participant writes.
            missing = [aid for aid in existing["participant_ids"] if not get_participant(aid, cid)]
            if missing:
                _put_participants(cid, missing, ts)
            return existing
    _put_participants(cid, item["participant_ids"], ts)
    return item


def create_group(creator_id: str, name: str, member_ids: Iterable[str]) -> Dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("name", "Group name is required")
    participant_ids = list(dict.fromkeys([creator_id, *member_ids]))
    if len(participant_ids) < 2:
        raise ValidationFailed("member_ids", "A group needs at least one member besides the creator")
    _require_accounts(participant_ids[1:], "member_ids")

    cid = "g_" + new_id()
    ts = now_ms()
    item = {
        "conversation_id": cid,
        "is_group": True,
        "name": name[:100],
        "created_by": creator_id,
        "created_at": ts,
        "last_activity_at": ts,
        "participant_ids": participant_ids,
    }
    _put_conversation(item)
    _put_participants(cid, participant_ids, ts)
    return item


def last_message(conversation_id: str) -> Optional[Dict[str, Any]]:
    resp = T.messages.query(
        KeyConditionExpression=Key("conversation_id").eq(conversation_id),
        ScanIndexForward=False,
        Limit=1,
    )
    items = resp.get("Items", [])
    return items[0] if items else None


def list_for(account_id: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    last_key = None
    while True:
        kwargs: Dict[str, Any] = {"KeyConditionExpression": Key("user_id").eq(account_id), "Limit": 200}
        if last_key:
            kwargs["ExclusiveStartKey"] = last_key
        resp = T.participants.query(**kwargs)
        for p in resp.get("Items", []):
            convo = get_conversation(p["conversation_id"])
            if not convo:
                continue
            out.append({**convo, "last_message": last_message(convo["conversation_id"])})
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            break

    out.sort(key=lambda c: (int(c.get("last_activity_at", 0) or 0), int(c.get("created_at", 0) or 0)), reverse=True)
    return out


def _validate_message(content: Optional[str], kind: str, attachment: Optional[str]) -> str:
    if kind not in MESSAGE_KINDS:
        raise ValidationFailed("kind", f"kind must be one of {', '.join(MESSAGE_KINDS)}")
    content = content or ""
    if len(content) > S.message_max_chars:
        raise ValidationFailed("content", f"content is limited to {S.message_max_chars} characters")
    if kind == "image":
        if not attachment:
            raise ValidationFailed("attachment", "image messages need an attachment")
        return content or "Sent an image"
    if not content.strip():
        raise ValidationFailed("content", "content is required")
    return content


def send_message(
    conversation_id: str,
    sender_id: str,
    content: Optional[str],
    kind: str = "text",
    attachment: Optional[str] = None,
    sender_username: Optional[str] = None,
    publish: Optional[Callable[[str, Any], int]] = None,
) -> Dict[str, Any]:
    require_participant(sender_id, conversation_id)
    content = _validate_message(content, kind, attachment)

    ts = _next_message_ms()
    message: Dict[str, Any] = {
        "conversation_id": conversation_id,
        "message_id": f"m_{ts:013d}_{new_id()[:8]}",
        "sender_id": sender_id,
        "content": content,
        "kind": kind,
        "created_at": ts,
    }
    if sender_username:
        message["sender_username"] = sender_username
    if attachment:
        message["attachment"] = attachment

    T.messages.put_item(Item=message)
    T.conversations.update_item(
        Key={"conversation_id": conversation_id},
        UpdateExpression="SET last_activity_at = :ts, last_message_preview = :p",
        ExpressionAttributeValues={":ts": ts, ":p": content[:S.preview_chars]},
    )

    (publish or broker.publish)(conversation_id, dict(message))
    return message


def history(conversation_id: str, account_id: str) -> List[Dict[str, Any]]:
    require_participant(account_id, conversation_id)
    out: List[Dict[str, Any]] = []
    last_key = None
    while True:
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("conversation_id").eq(conversation_id),
            "ScanIndexForward": True,
            "Limit": 500,
        }
        if last_key:
            kwargs["ExclusiveStartKey"] = last_key
        resp = T.messages.query(**kwargs)
        out.extend(resp.get("Items", []))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            break
    return out
