from __future__ import annotations

import json
from typing import Any, Dict

from chatapi.core.normalize import client_ip_from_request
from chatapi.core.settings import S
from chatapi.core.time import now_ts
from chatapi.metrics import record_auth_event

def audit_event(event: str, subject: str, request=None, **fields: Any) -> None:
    payload: Dict[str, Any] = {"event": event, "subject": subject, "ts": now_ts(), **fields}
    if request is not None:
        payload["ip"] = client_ip_from_request(request)
        payload["user_agent"] = (request.headers.get("user-agent", "")[:256])

    record_auth_event(event, str(fields.get("outcome", "info")))

    # stdout audit log
    if not S.audit_log_enabled:
        return
    print(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))
