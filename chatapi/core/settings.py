from __future__ import annotations

import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB tables
    ddb_accounts_table: str = os.environ.get("DDB_ACCOUNTS_TABLE", "Accounts")
    ddb_conversations_table: str = os.environ.get("DDB_CONVERSATIONS_TABLE", "Conversations")
    ddb_participants_table: str = os.environ.get("DDB_PARTICIPANTS_TABLE", "Participants")
    ddb_messages_table: str = os.environ.get("DDB_MESSAGES_TABLE", "Messages")
    ddb_todos_table: str = os.environ.get("DDB_TODOS_TABLE", "Todos")
    ddb_secrets_table: str = os.environ.get("DDB_SECRETS_TABLE", "Secrets")

    # TTL
    ddb_ttl_attr: str = os.environ.get("DDB_TTL_ATTR", "ttl_epoch")

    # Secret store: "memory" for a single node, "dynamodb" when several instances share counters
    secret_store_backend: str = os.environ.get("SECRET_STORE_BACKEND", "memory").lower()

    # Session tokens
    jwt_secret: str = os.environ.get("JWT_SECRET", "dev-change-me")
    jwt_issuer: str = os.environ.get("JWT_ISSUER", "chatapi")
    session_token_ttl_seconds: int = int(os.environ.get("SESSION_TOKEN_TTL_SECONDS", str(7 * 24 * 3600)))

    # One-time codes
    otp_ttl_seconds: int = int(os.environ.get("OTP_TTL_SECONDS", "600"))
    otp_digits: int = int(os.environ.get("OTP_DIGITS", "6"))
    otp_console_delivery: bool = os.environ.get("OTP_CONSOLE_DELIVERY", "0") not in ("0", "false", "False")

    # Login rate limiting
    login_max_attempts: int = int(os.environ.get("LOGIN_MAX_ATTEMPTS", "5"))
    login_window_seconds: int = int(os.environ.get("LOGIN_WINDOW_SECONDS", "60"))
    otp_verify_max_attempts: int = int(os.environ.get("OTP_VERIFY_MAX_ATTEMPTS", "10"))
    otp_verify_window_seconds: int = int(os.environ.get("OTP_VERIFY_WINDOW_SECONDS", "600"))
    # Per-username ceilings, counted across all source addresses
    login_user_max_attempts: int = int(os.environ.get("LOGIN_USER_MAX_ATTEMPTS", "20"))
    otp_verify_user_max_attempts: int = int(os.environ.get("OTP_VERIFY_USER_MAX_ATTEMPTS", "20"))

    # Only honour X-Forwarded-For when a trusted proxy sets it
    trust_forwarded_for: bool = os.environ.get("TRUST_FORWARDED_FOR", "0") not in ("0", "false", "False")

    # Passwords
    password_hash_iterations: int = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "200000"))

    # SES
    ses_from_email: str = os.environ.get("SES_FROM_EMAIL", "")

    # Broker / streams
    broker_queue_size: int = int(os.environ.get("BROKER_QUEUE_SIZE", "200"))
    stream_ping_seconds: int = int(os.environ.get("STREAM_PING_SECONDS", "15"))

    # Messages
    message_max_chars: int = int(os.environ.get("MESSAGE_MAX_CHARS", "4000"))
    preview_chars: int = int(os.environ.get("PREVIEW_CHARS", "140"))

    cors_origins: str = os.environ.get("CORS_ORIGINS", "*")
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")
    audit_log_enabled: bool = os.environ.get("AUDIT_LOG_ENABLED", "1") not in ("0", "false", "False")


S = Settings()
