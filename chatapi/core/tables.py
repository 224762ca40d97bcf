from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb
from .settings import S

@dataclass(frozen=True)
class Tables:
    accounts: Any
    conversations: Any
    participants: Any
    messages: Any
    todos: Any
    secrets: Any

T = Tables(
    accounts=ddb.Table(S.ddb_accounts_table),
    conversations=ddb.Table(S.ddb_conversations_table),
    participants=ddb.Table(S.ddb_participants_table),
    messages=ddb.Table(S.ddb_messages_table),
    todos=ddb.Table(S.ddb_todos_table),
    secrets=ddb.Table(S.ddb_secrets_table),
)
