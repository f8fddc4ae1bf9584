from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

DEFAULT_BACKGROUND_COLOR = "#ffffff"
DEFAULT_FONT_SIZE = "normal"
DEFAULT_TEXT_FORMATTING = "{}"
DEFAULT_LABEL_COLOR = "#3b82f6"

SUPPORTED_PROVIDERS = ("google", "facebook", "microsoft")

NOTE_FIELDS = (
    "title",
    "content",
    "summary",
    "pinned",
    "archived",
    "labels",
    "background_color",
    "font_size",
    "text_formatting",
)
LABEL_FIELDS = ("name", "color")
TOGGLE_FIELDS = ("pinned", "archived")


@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: Optional[str] = None
    provider_ids: Dict[str, str] = field(default_factory=dict)
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)


@dataclass
class Note:
    id: str
    user_id: str
    title: str
    content: str
    summary: Optional[str] = None
    pinned: bool = False
    archived: bool = False
    labels: List[str] = field(default_factory=list)
    background_color: str = DEFAULT_BACKGROUND_COLOR
    font_size: str = DEFAULT_FONT_SIZE
    text_formatting: str = DEFAULT_TEXT_FORMATTING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Set on the returned copy only when an optional summary could not be made.
    summary_error: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "pinned": self.pinned,
            "archived": self.archived,
            "labels": list(self.labels),
            "background_color": self.background_color,
            "font_size": self.font_size,
            "text_formatting": self.text_formatting,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "summary_error": self.summary_error,
        }


@dataclass
class Label:
    id: str
    user_id: str
    name: str
    color: str = DEFAULT_LABEL_COLOR
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "color": self.color,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class UserClaims:
    """Identity carried inside an access token."""

    user_id: str
    email: str
    name: str
