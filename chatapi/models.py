from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# -------------------------
# Auth
# -------------------------
class RegisterReq(BaseModel):
    username: str = Field(min_length=3, max_length=32)
    password: str = Field(min_length=6, max_length=256)
    email: str = Field(min_length=3, max_length=254)

class LoginReq(BaseModel):
    username: str = Field(min_length=3, max_length=32)
    password: str = Field(min_length=6, max_length=256)

class VerifyOtpReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    username: str = Field(min_length=1, max_length=32)
    otp: str = Field(pattern=r"^\d{6}$", validation_alias=AliasChoices("otp", "code"))

class TokenResp(BaseModel):
    token: str
    username: str

class LoginResp(BaseModel):
    status: Literal["OTP_SENT"] = "OTP_SENT"
    message: str = "A login code was sent to your email"

class AccountOut(BaseModel):
    account_id: str
    username: str
    email: str = ""
    online: bool = False
    created_at: int = 0

class UserOut(BaseModel):
    account_id: str
    username: str
    online: bool = False

# -------------------------
# Chat
# -------------------------
class CreatePrivateReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    other_account_id: str = Field(min_length=1, validation_alias=AliasChoices("other_account_id", "otherUserId"))

class CreateGroupReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    name: str = Field(min_length=1, max_length=100)
    member_ids: List[str] = Field(min_length=1, validation_alias=AliasChoices("member_ids", "participantIds"))

class SendMessageReq(BaseModel):
    content: Optional[str] = Field(default=None, max_length=4000)
    kind: Literal["text", "code", "image"] = "text"
    attachment: Optional[str] = None

    @model_validator(mode="after")
    def _content_matches_kind(self) -> "SendMessageReq":
        if self.kind == "image":
            if not self.attachment:
                raise ValueError("image messages need an attachment")
        elif not (self.content or "").strip():
            raise ValueError("content is required for text and code messages")
        return self

class MessageOut(BaseModel):
    conversation_id: str
    message_id: str
    sender_id: str
    sender_username: Optional[str] = None
    content: str
    kind: Literal["text", "code", "image"]
    attachment: Optional[str] = None
    created_at: int

class ConversationOut(BaseModel):
    conversation_id: str
    is_group: bool
    name: Optional[str] = None
    created_by: str
    created_at: int
    last_activity_at: int
    participant_ids: List[str] = Field(default_factory=list)
    last_message: Optional[MessageOut] = None

# -------------------------
# Todos
# -------------------------
class TodoCreateReq(BaseModel):
    text: str = Field(min_length=3, max_length=100)

class TodoUpdateReq(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1, max_length=100)
    done: Optional[bool] = None

class TodoOut(BaseModel):
    todo_id: str
    text: str
    done: bool
    created_at: int

class StatusResp(BaseModel):
    status: str = "ok"
    details: Dict[str, Any] = Field(default_factory=dict)
