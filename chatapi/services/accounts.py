from __future__ import annotations

import uuid
from functools import lru_cache
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from chatapi.core.crypto import hash_password, verify_password
from chatapi.core.errors import Conflict, NotFound, Unauthorized, is_conditional_failure
from chatapi.core.normalize import normalize_email, normalize_username
from chatapi.core.tables import T
from chatapi.core.time import now_ts

BAD_CREDENTIALS = "Invalid username or password"

def _username_claim(username: str) -> str:
    return f"uname#{username}"

def _email_claim(email: str) -> str:
    return f"email#{email}"

def _is_claim(account_id: str) -> bool:
    return "#" in account_id

@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("not-a-real-password")

def _claim(claim_id: str, owner_id: str) -> bool:
    try:
        T.accounts.put_item(
            Item={"account_id": claim_id, "owner_id": owner_id, "created_at": now_ts()},
            ConditionExpression="attribute_not_exists(account_id)",
        )
        return True
    except ClientError as exc:
        if is_conditional_failure(exc):
            return False
        raise

def account_summary(acct: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "account_id": acct["account_id"],
        "username": acct.get("username", ""),
        "email": acct.get("email", ""),
        "online": bool(acct.get("online", False)),
        "created_at": int(acct.get("created_at", 0) or 0),
    }

def create_account(username: str, email: str, password: str) -> Dict[str, Any]:
    username = normalize_username(username)
    email = normalize_email(email)
    account_id = uuid.uuid4().hex

    if not _claim(_username_claim(username), account_id):
        raise Conflict("Username already taken")
    if not _claim(_email_claim(email), account_id):
        T.accounts.delete_item(Key={"account_id": _username_claim(username)})
        raise Conflict("Email already registered")

    item = {
        "account_id": account_id,
        "username": username,
        "email": email,
        "password_hash": hash_password(password),
        "online": False,
        "created_at": now_ts(),
    }
    T.accounts.put_item(Item=item)
    return item

def get_account(account_id: str) -> Optional[Dict[str, Any]]:
    if not account_id or _is_claim(account_id):
        return None
    return T.accounts.get_item(Key={"account_id": account_id}).get("Item")

def get_account_by_username(username: str) -> Dict[str, Any]:
    claim = T.accounts.get_item(Key={"account_id": _username_claim((username or "").strip().lower())}).get("Item")
    acct = get_account(claim.get("owner_id", "")) if claim else None
    if not acct:
        raise NotFound("Account not found")
    return acct

def verify_credentials(username: str, password: str) -> Dict[str, Any]:
    try:
        acct = get_account_by_username(username)
    except NotFound:
        # Same hashing cost as a real check so timing does not reveal which case occurred.
        verify_password(password, _dummy_hash())
        raise Unauthorized(BAD_CREDENTIALS)
    if not verify_password(password, acct.get("password_hash", "")):
        raise Unauthorized(BAD_CREDENTIALS)
    return acct

def set_online(account_id: str, online: bool) -> None:
    try:
        T.accounts.update_item(
            Key={"account_id": account_id},
            UpdateExpression="SET online = :o, last_seen_at = :now",
            ConditionExpression="attribute_exists(account_id)",
            ExpressionAttributeValues={":o": bool(online), ":now": now_ts()},
        )
    except ClientError as exc:
        if not is_conditional_failure(exc):
            raise

def list_accounts(exclude_id: Optional[str] = None) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    last_key = None
    while True:
        kwargs: Dict[str, Any] = {"Limit": 200}
        if last_key:
            kwargs["ExclusiveStartKey"] = last_key
        resp = T.accounts.scan(**kwargs)
        for it in resp.get("Items", []):
            aid = it.get("account_id", "")
            if not aid or _is_claim(aid) or aid == exclude_id:
                continue
            out.append(account_summary(it))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            break
    out.sort(key=lambda a: a["username"])
    return out

def delete_account(account_id: str) -> bool:
    acct = get_account(account_id)
    if not acct:
        return False
    T.accounts.delete_item(Key={"account_id": account_id})
    T.accounts.delete_item(Key={"account_id": _username_claim(acct["username"])})
    T.accounts.delete_item(Key={"account_id": _email_claim(acct["email"])})
    return True
