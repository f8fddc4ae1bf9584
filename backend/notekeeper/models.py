from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    # Null for accounts that only ever signed in through a provider.
    password_hash = Column(String)
    google_id = Column(String, unique=True)
    facebook_id = Column(String, unique=True)
    microsoft_id = Column(String, unique=True)
    avatar = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Label(Base):
    __tablename__ = "labels"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Note(Base):
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    summary = Column(Text)

    pinned = Column(Boolean, default=False, nullable=False)
    archived = Column(Boolean, default=False, nullable=False)
    # JSON list of label ids; no foreign key, so deleted labels can linger here.
    labels = Column(Text, nullable=False, default="[]")

    background_color = Column(String, nullable=False)
    font_size = Column(String, nullable=False)
    text_formatting = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


PROVIDER_COLUMNS = {
    "google": User.google_id,
    "facebook": User.facebook_id,
    "microsoft": User.microsoft_id,
}
