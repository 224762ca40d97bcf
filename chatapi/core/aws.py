from __future__ import annotations

import boto3

from .settings import S

_session = boto3.session.Session(region_name=S.aws_region or "us-east-1")

ddb = _session.resource("dynamodb")

# SES is only wired when a sender address is configured.
ses = _session.client("ses") if S.ses_from_email else None
