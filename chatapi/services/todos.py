from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key

from chatapi.core.errors import Forbidden
from chatapi.core.tables import T
from chatapi.core.time import now_ms

def _get(user_id: str, todo_id: str) -> Optional[Dict[str, Any]]:
    return T.todos.get_item(Key={"user_id": user_id, "todo_id": todo_id}).get("Item")

def require_own_todo(user_id: str, todo_id: str) -> Dict[str, Any]:
    # Rows are keyed by owner, so another account's todo is simply not found under this key.
    it = _get(user_id, todo_id)
    if not it:
        raise Forbidden("Not your todo")
    return it

def list_todos(user_id: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    last_key = None
    while True:
        kwargs: Dict[str, Any] = {"KeyConditionExpression": Key("user_id").eq(user_id), "Limit": 200}
        if last_key:
            kwargs["ExclusiveStartKey"] = last_key
        resp = T.todos.query(**kwargs)
        out.extend(resp.get("Items", []))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            break
    out.sort(key=lambda t: int(t.get("created_at", 0) or 0), reverse=True)
    return out

def add_todo(user_id: str, text: str) -> Dict[str, Any]:
    item = {
        "user_id": user_id,
        "todo_id": str(uuid.uuid4()),
        "text": text.strip(),
        "done": False,
        "created_at": now_ms(),
    }
    T.todos.put_item(Item=item)
    return item

def update_todo(user_id: str, todo_id: str, *, text: Optional[str] = None, done: Optional[bool] = None) -> Dict[str, Any]:
    it = require_own_todo(user_id, todo_id)
    if text is not None:
        it["text"] = text.strip()
    if done is not None:
        it["done"] = bool(done)
    T.todos.update_item(
        Key={"user_id": user_id, "todo_id": todo_id},
        UpdateExpression="SET #t = :t, done = :d",
        ExpressionAttributeNames={"#t": "text"},
        ExpressionAttributeValues={":t": it["text"], ":d": it["done"]},
    )
    return it

def delete_todo(user_id: str, todo_id: str) -> Dict[str, Any]:
    it = require_own_todo(user_id, todo_id)
    T.todos.delete_item(Key={"user_id": user_id, "todo_id": todo_id})
    return it

def clear_completed(user_id: str) -> int:
    done = [t for t in list_todos(user_id) if t.get("done")]
    if done:
        with T.todos.batch_writer() as batch:
            for t in done:
                batch.delete_item(Key={"user_id": user_id, "todo_id": t["todo_id"]})
    return len(done)
