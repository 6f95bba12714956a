"""
Database Schemas for Hubly Desk

Each Pydantic model maps to a MongoDB collection with the model name lowercased.
- User -> user
- Session -> session
- Lead -> lead
- Conversation -> conversation
- ChatbotSettings -> chatbotsettings

References between documents are stored as the referenced `_id` in string form.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

UserRole = Literal["Admin", "Member"]
LeadStatus = Literal["Unresolved", "Resolved"]
SendBy = Literal["Lead", "Member"]

LEAD_STATUSES = ("Unresolved", "Resolved")


class User(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password_hash: str = Field(..., description="SHA256 hash of password with salt")
    contact: Optional[str] = None
    user_role: UserRole = "Member"
    parent: Optional[str] = Field(None, description="Admin that created this member")
    refresh_token: Optional[str] = None
    refresh_expires_at: Optional[datetime] = None


class Session(BaseModel):
    user_id: str
    token: str
    expires_at: datetime


class Lead(BaseModel):
    ticket_id: str = Field(..., description="Human readable daily ticket code")
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    current_assignee: Optional[str] = None
    assignee_list: List[str] = Field(default_factory=list, description="Most recent assignee first")
    is_first_message_shared: bool = False
    is_details_shared: bool = False
    status: LeadStatus = "Unresolved"
    response_time: int = Field(0, description="Seconds to first staff reply, 0 until then")
    is_missed_chat: bool = False


class Conversation(BaseModel):
    lead_id: str
    message: str
    send_by: SendBy = "Lead"
    assignee_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class Sender(BaseModel):
    """Who wrote a conversation turn: the visitor, or a staff member."""
    kind: SendBy
    staff_id: Optional[str] = None

    @classmethod
    def of(cls, turn: dict) -> "Sender":
        if turn.get("send_by") == "Member":
            return cls(kind="Member", staff_id=turn.get("assignee_id"))
        return cls(kind="Lead")


class FormPlaceholder(BaseModel):
    name: str = "Your name"
    email: str = "example@gmail.com"
    phone: str = "+1 (000) 000-0000"
    submit_button: str = "Thank You!"


class MissedChatTimer(BaseModel):
    hour: int = Field(0, ge=0)
    minute: int = Field(0, ge=0)
    second: int = Field(0, ge=0)

    @property
    def total_seconds(self) -> int:
        return self.hour * 3600 + self.minute * 60 + self.second


class ChatbotSettings(BaseModel):
    header_color: str
    background_color: str
    customized_messages: List[str]
    form_placeholder: FormPlaceholder
    welcome_message: str
    missed_chat_timer: MissedChatTimer
