from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Identifier = Union[int, str]


class UserCreate(BaseModel):
    name: str
    email: str
    password: str


class UserLogin(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None


class ClaimsOut(BaseModel):
    id: str
    email: str
    name: str


class AuthOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class NoteCreate(BaseModel):
    title: str
    content: str
    summary: Optional[str] = None
    pinned: bool = False
    archived: bool = False
    labels: List[Identifier] = Field(default_factory=list)
    background_color: Optional[str] = None
    font_size: Optional[str] = None
    text_formatting: Optional[str] = None
    generate_summary: bool = False


class NoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    pinned: Optional[bool] = None
    archived: Optional[bool] = None
    labels: Optional[List[Identifier]] = None
    background_color: Optional[str] = None
    font_size: Optional[str] = None
    text_formatting: Optional[str] = None
    generate_summary: bool = False


class NoteOut(BaseModel):
    id: str
    user_id: str
    title: str
    content: str
    summary: Optional[str] = None
    pinned: bool = False
    archived: bool = False
    labels: List[str] = Field(default_factory=list)
    background_color: str
    font_size: str
    text_formatting: str
    created_at: datetime
    updated_at: datetime
    summary_error: Optional[str] = None


class LabelAction(BaseModel):
    action: str


class LabelCreate(BaseModel):
    name: str
    color: Optional[str] = None


class LabelUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class LabelOut(BaseModel):
    id: str
    user_id: str
    name: str
    color: str
    created_at: datetime


class FormatRequest(BaseModel):
    text: str = ""


class SpanOut(BaseModel):
    kind: str
    text: str
    children: List["SpanOut"] = Field(default_factory=list)


class BlockOut(BaseModel):
    kind: str
    text: str = ""
    level: Optional[int] = None
    number: Optional[int] = None
    spans: List[SpanOut] = Field(default_factory=list)


SpanOut.model_rebuild()


class MessageOut(BaseModel):
    message: str
