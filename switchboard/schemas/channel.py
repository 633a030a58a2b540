from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class ChannelStatusResponse(BaseModel):
    channel_id: str
    provider: str
    type: str
    is_active: bool
    is_connected: bool
    is_authenticated: bool
    last_activity: Optional[datetime] = None
    pending_messages: int = 0


class ChannelActionResponse(BaseModel):
    success: bool
    channel_id: str
    message: Optional[str] = None


class ActiveChannelsResponse(BaseModel):
    channel_ids: list[str]
    count: int


class QRCodeResponse(BaseModel):
    qr_code: str
    qr_code_url: Optional[str] = None
    session_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    already_authenticated: bool = False


class SendMessageRequest(BaseModel):
    to: str = Field(validation_alias=AliasChoices("to", "chatId", "remote_jid"))
    text: str = Field(min_length=1, validation_alias=AliasChoices("text", "content", "body"))
    conversation_id: Optional[str] = None


class SendMessageResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class WebhookAck(BaseModel):
    success: bool = True
    accepted: int = 0
