"""Entity storage for users, notes and labels.

``Store`` is the capability interface the auth gate and the note service
talk to. Two implementations sit behind it: ``MemoryStore`` (volatile,
process-local maps) and ``SqlStore`` (SQLAlchemy, persistent). Which one is
used is decided once by ``build_store`` from ``STORAGE_BACKEND``.

Identifiers are always strings at this boundary. ``normalize_id`` turns any
accepted spelling (``7``, ``"7"``, ``" 007 "``) into the canonical form before
it is compared or looked up, so callers never coerce types themselves.
"""

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from itertools import count
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from . import models, security
from .database import DATABASE_URL, Base, build_engine, build_session_factory
from .entities import (
    DEFAULT_BACKGROUND_COLOR,
    DEFAULT_FONT_SIZE,
    DEFAULT_LABEL_COLOR,
    DEFAULT_TEXT_FORMATTING,
    LABEL_FIELDS,
    NOTE_FIELDS,
    SUPPORTED_PROVIDERS,
    Label,
    Note,
    User,
)
from .errors import ConflictError, ValidationError
from .time_utils import ensure_app_tz, now_local

logger = logging.getLogger(__name__)

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").strip().lower()

NUMERIC_ID_PATTERN = re.compile(r"\d+")

STYLE_DEFAULTS = {
    "background_color": DEFAULT_BACKGROUND_COLOR,
    "font_size": DEFAULT_FONT_SIZE,
    "text_formatting": DEFAULT_TEXT_FORMATTING,
}

Clock = Callable[[], datetime]


def normalize_id(value: Any, field: str = "id") -> str:
    if value is None or isinstance(value, bool):
        raise ValidationError("Invalid identifier", field=field)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            raise ValidationError("Invalid identifier", field=field)
        if NUMERIC_ID_PATTERN.fullmatch(cleaned):
            return str(int(cleaned))
        return cleaned
    raise ValidationError("Invalid identifier", field=field)


def normalize_label_ids(values: Any) -> List[str]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValidationError("labels must be a list of identifiers", field="labels")
    normalized: List[str] = []
    seen = set()
    for value in values:
        label_id = normalize_id(value, field="labels")
        if label_id in seen:
            continue
        seen.add(label_id)
        normalized.append(label_id)
    return normalized


def normalize_provider(provider: str) -> str:
    key = str(provider or "").strip().lower()
    if key not in SUPPORTED_PROVIDERS:
        raise ValidationError(f"Unsupported provider: {provider}", field="provider")
    return key


def _normalize_provider_ids(provider_ids: Optional[Dict[str, Any]]) -> Dict[str, str]:
    normalized: Dict[str, str] = {}
    for provider, provider_id in (provider_ids or {}).items():
        if provider_id is None or str(provider_id).strip() == "":
            continue
        normalized[normalize_provider(provider)] = str(provider_id).strip()
    return normalized


def _check_fields(fields: Dict[str, Any], allowed, kind: str) -> None:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown {kind} field: {unknown[0]}", field=unknown[0])


def _coerce_note_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    _check_fields(fields, NOTE_FIELDS, "note")
    values = dict(fields)
    for key in ("title", "content"):
        if key in values and not values[key]:
            raise ValidationError(f"{key} must not be empty", field=key)
    if "labels" in values:
        values["labels"] = normalize_label_ids(values["labels"])
    for key in ("pinned", "archived"):
        if key in values:
            values[key] = bool(values[key])
    for key, default in STYLE_DEFAULTS.items():
        if key in values and not values[key]:
            values[key] = default
    return values


def _note_create_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("title", "content"):
        if key not in fields:
            raise ValidationError(f"{key} is required", field=key)
    values: Dict[str, Any] = {"summary": None, "pinned": False, "archived": False, "labels": []}
    values.update(STYLE_DEFAULTS)
    values.update(_coerce_note_values(fields))
    return values


def _coerce_label_values(fields: Dict[str, Any], creating: bool = False) -> Dict[str, Any]:
    _check_fields(fields, LABEL_FIELDS, "label")
    values = dict(fields)
    if creating and "name" not in values:
        raise ValidationError("name is required", field="name")
    if "name" in values and not str(values["name"] or "").strip():
        raise ValidationError("name must not be empty", field="name")
    if creating or "color" in values:
        values["color"] = values.get("color") or DEFAULT_LABEL_COLOR
    return values


def _sort_notes(notes: List[Note]) -> List[Note]:
    # Both sorts are stable, so equal keys keep insertion order.
    ordered = sorted(notes, key=lambda note: note.updated_at, reverse=True)
    ordered.sort(key=lambda note: not note.pinned)
    return ordered


def _copy_user(user: User) -> User:
    return replace(user, provider_ids=dict(user.provider_ids))


def _copy_note(note: Note) -> Note:
    return replace(note, labels=list(note.labels))


class Store(ABC):
    """Storage capability shared by the volatile and persistent backends."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or now_local

    def _now(self) -> datetime:
        return ensure_app_tz(self._clock())

    # -- users --

    def create_user(
        self,
        name: str,
        email: str,
        password: Optional[str] = None,
        provider_ids: Optional[Dict[str, Any]] = None,
        avatar: Optional[str] = None,
    ) -> User:
        """Insert a user, failing with ``ConflictError`` on a taken e-mail or provider id.

        The uniqueness check and the insert happen as one step inside the
        backend, so two concurrent registrations cannot both succeed.
        """
        password_hash = security.get_password_hash(password) if password else None
        return self._insert_user(
            name=name,
            email=email,
            password_hash=password_hash,
            provider_ids=_normalize_provider_ids(provider_ids),
            avatar=avatar,
        )

    @abstractmethod
    def _insert_user(
        self,
        name: str,
        email: str,
        password_hash: Optional[str],
        provider_ids: Dict[str, str],
        avatar: Optional[str],
    ) -> User:
        ...

    @abstractmethod
    def get_user(self, user_id: Any) -> Optional[User]:
        ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    def get_user_by_provider(self, provider: str, provider_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def link_provider(self, user_id: Any, provider: str, provider_id: str) -> Optional[User]:
        ...

    # -- notes --

    @abstractmethod
    def create_note(self, owner_id: Any, fields: Dict[str, Any]) -> Note:
        ...

    @abstractmethod
    def get_note(self, note_id: Any) -> Optional[Note]:
        ...

    @abstractmethod
    def list_notes_by_owner(self, owner_id: Any) -> List[Note]:
        """Owner's notes, pinned first, then most recently updated first."""

    @abstractmethod
    def update_note(self, note_id: Any, fields: Dict[str, Any]) -> Optional[Note]:
        """Apply only the given fields and refresh ``updated_at``."""

    @abstractmethod
    def delete_note(self, note_id: Any) -> bool:
        ...

    # -- labels --

    @abstractmethod
    def create_label(self, owner_id: Any, fields: Dict[str, Any]) -> Label:
        ...

    @abstractmethod
    def get_label(self, label_id: Any) -> Optional[Label]:
        ...

    @abstractmethod
    def list_labels_by_owner(self, owner_id: Any) -> List[Label]:
        """Owner's labels ordered by name, ignoring case."""

    @abstractmethod
    def update_label(self, label_id: Any, fields: Dict[str, Any]) -> Optional[Label]:
        ...

    @abstractmethod
    def delete_label(self, label_id: Any) -> bool:
        ...


class MemoryStore(Store):
    """Volatile store; every read and write runs under one lock."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._notes: Dict[str, Note] = {}
        self._labels: Dict[str, Label] = {}
        self._user_ids = count(1)
        self._note_ids = count(1)
        self._label_ids = count(1)

    def _user_with_provider(self, provider: str, provider_id: str) -> Optional[User]:
        for user in self._users.values():
            if user.provider_ids.get(provider) == provider_id:
                return user
        return None

    def _user_with_email(self, email: str) -> Optional[User]:
        for user in self._users.values():
            if user.email == email:
                return user
        return None

    def _insert_user(self, name, email, password_hash, provider_ids, avatar) -> User:
        with self._lock:
            if self._user_with_email(email) is not None:
                raise ConflictError("Email already registered", field="email")
            for provider, provider_id in provider_ids.items():
                if self._user_with_provider(provider, provider_id) is not None:
                    raise ConflictError(f"{provider} account already linked", field="provider_id")
            user = User(
                id=str(next(self._user_ids)),
                name=name,
                email=email,
                password_hash=password_hash,
                provider_ids=dict(provider_ids),
                avatar=avatar,
                created_at=self._now(),
            )
            self._users[user.id] = user
            return _copy_user(user)

    def get_user(self, user_id: Any) -> Optional[User]:
        with self._lock:
            user = self._users.get(normalize_id(user_id))
            return _copy_user(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            user = self._user_with_email(email)
            return _copy_user(user) if user else None

    def get_user_by_provider(self, provider: str, provider_id: str) -> Optional[User]:
        provider = normalize_provider(provider)
        with self._lock:
            user = self._user_with_provider(provider, str(provider_id))
            return _copy_user(user) if user else None

    def link_provider(self, user_id: Any, provider: str, provider_id: str) -> Optional[User]:
        provider = normalize_provider(provider)
        provider_id = str(provider_id)
        with self._lock:
            user = self._users.get(normalize_id(user_id))
            if user is None:
                return None
            holder = self._user_with_provider(provider, provider_id)
            if holder is not None and holder.id != user.id:
                raise ConflictError(f"{provider} account already linked", field="provider_id")
            user.provider_ids[provider] = provider_id
            return _copy_user(user)

    def create_note(self, owner_id: Any, fields: Dict[str, Any]) -> Note:
        values = _note_create_values(fields)
        owner_id = normalize_id(owner_id, field="user_id")
        with self._lock:
            now = self._now()
            note = Note(
                id=str(next(self._note_ids)),
                user_id=owner_id,
                created_at=now,
                updated_at=now,
                **values,
            )
            self._notes[note.id] = note
            return _copy_note(note)

    def get_note(self, note_id: Any) -> Optional[Note]:
        with self._lock:
            note = self._notes.get(normalize_id(note_id))
            return _copy_note(note) if note else None

    def list_notes_by_owner(self, owner_id: Any) -> List[Note]:
        owner_id = normalize_id(owner_id, field="user_id")
        with self._lock:
            owned = [note for note in self._notes.values() if note.user_id == owner_id]
            return [_copy_note(note) for note in _sort_notes(owned)]

    def update_note(self, note_id: Any, fields: Dict[str, Any]) -> Optional[Note]:
        values = _coerce_note_values(fields)
        with self._lock:
            note = self._notes.get(normalize_id(note_id))
            if note is None:
                return None
            changes: Dict[str, Any] = {"labels": list(note.labels)}
            changes.update(values)
            updated = replace(note, **changes)
            updated.updated_at = max(self._now(), note.created_at)
            self._notes[note.id] = updated
            return _copy_note(updated)

    def delete_note(self, note_id: Any) -> bool:
        with self._lock:
            return self._notes.pop(normalize_id(note_id), None) is not None

    def create_label(self, owner_id: Any, fields: Dict[str, Any]) -> Label:
        values = _coerce_label_values(fields, creating=True)
        owner_id = normalize_id(owner_id, field="user_id")
        with self._lock:
            label = Label(
                id=str(next(self._label_ids)),
                user_id=owner_id,
                created_at=self._now(),
                **values,
            )
            self._labels[label.id] = label
            return replace(label)

    def get_label(self, label_id: Any) -> Optional[Label]:
        with self._lock:
            label = self._labels.get(normalize_id(label_id))
            return replace(label) if label else None

    def list_labels_by_owner(self, owner_id: Any) -> List[Label]:
        owner_id = normalize_id(owner_id, field="user_id")
        with self._lock:
            owned = [replace(label) for label in self._labels.values() if label.user_id == owner_id]
        return sorted(owned, key=lambda label: label.name.lower())

    def update_label(self, label_id: Any, fields: Dict[str, Any]) -> Optional[Label]:
        values = _coerce_label_values(fields)
        with self._lock:
            label = self._labels.get(normalize_id(label_id))
            if label is None:
                return None
            updated = replace(label, **values)
            self._labels[label.id] = updated
            return replace(updated)

    def delete_label(self, label_id: Any) -> bool:
        with self._lock:
            return self._labels.pop(normalize_id(label_id), None) is not None


def _safe_json_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []
    return [str(item) for item in data]


def _user_from_row(row: models.User) -> User:
    provider_ids = {}
    for provider, column in models.PROVIDER_COLUMNS.items():
        value = getattr(row, column.key)
        if value:
            provider_ids[provider] = value
    return User(
        id=str(row.id),
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        provider_ids=provider_ids,
        avatar=row.avatar,
        created_at=ensure_app_tz(row.created_at),
    )


def _note_from_row(row: models.Note) -> Note:
    return Note(
        id=str(row.id),
        user_id=str(row.user_id),
        title=row.title,
        content=row.content,
        summary=row.summary,
        pinned=bool(row.pinned),
        archived=bool(row.archived),
        labels=_safe_json_list(row.labels),
        background_color=row.background_color,
        font_size=row.font_size,
        text_formatting=row.text_formatting,
        created_at=ensure_app_tz(row.created_at),
        updated_at=ensure_app_tz(row.updated_at),
    )


def _label_from_row(row: models.Label) -> Label:
    return Label(
        id=str(row.id),
        user_id=str(row.user_id),
        name=row.name,
        color=row.color,
        created_at=ensure_app_tz(row.created_at),
    )


def _to_pk(value: Any, field: str = "id") -> Optional[int]:
    canonical = normalize_id(value, field=field)
    if NUMERIC_ID_PATTERN.fullmatch(canonical):
        return int(canonical)
    return None


def _owner_pk(owner_id: Any) -> int:
    pk = _to_pk(owner_id, field="user_id")
    if pk is None:
        raise ValidationError("Invalid identifier", field="user_id")
    return pk


class SqlStore(Store):
    """Persistent store on SQLAlchemy; uniqueness rests on table constraints."""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, url: str = DATABASE_URL, clock: Optional[Clock] = None) -> "SqlStore":
        engine = build_engine(url)
        Base.metadata.create_all(bind=engine)
        return cls(build_session_factory(engine), clock=clock)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _insert_user(self, name, email, password_hash, provider_ids, avatar) -> User:
        with self._session() as db:
            if db.query(models.User.id).filter(models.User.email == email).first():
                raise ConflictError("Email already registered", field="email")
            row = models.User(
                name=name,
                email=email,
                password_hash=password_hash,
                avatar=avatar,
                created_at=self._now(),
            )
            for provider, provider_id in provider_ids.items():
                setattr(row, models.PROVIDER_COLUMNS[provider].key, provider_id)
            db.add(row)
            try:
                db.flush()
            except IntegrityError as exc:
                raise ConflictError("Account already exists", field="email") from exc
            return _user_from_row(row)

    def get_user(self, user_id: Any) -> Optional[User]:
        pk = _to_pk(user_id)
        if pk is None:
            return None
        with self._session() as db:
            row = db.get(models.User, pk)
            return _user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as db:
            row = db.query(models.User).filter(models.User.email == email).first()
            return _user_from_row(row) if row else None

    def get_user_by_provider(self, provider: str, provider_id: str) -> Optional[User]:
        column = models.PROVIDER_COLUMNS[normalize_provider(provider)]
        with self._session() as db:
            row = db.query(models.User).filter(column == str(provider_id)).first()
            return _user_from_row(row) if row else None

    def link_provider(self, user_id: Any, provider: str, provider_id: str) -> Optional[User]:
        provider = normalize_provider(provider)
        pk = _to_pk(user_id)
        if pk is None:
            return None
        with self._session() as db:
            row = db.get(models.User, pk)
            if row is None:
                return None
            setattr(row, models.PROVIDER_COLUMNS[provider].key, str(provider_id))
            try:
                db.flush()
            except IntegrityError as exc:
                raise ConflictError(f"{provider} account already linked", field="provider_id") from exc
            return _user_from_row(row)

    def create_note(self, owner_id: Any, fields: Dict[str, Any]) -> Note:
        values = _note_create_values(fields)
        values["labels"] = json.dumps(values["labels"])
        owner_pk = _owner_pk(owner_id)
        now = self._now()
        with self._session() as db:
            row = models.Note(user_id=owner_pk, created_at=now, updated_at=now, **values)
            db.add(row)
            db.flush()
            return _note_from_row(row)

    def get_note(self, note_id: Any) -> Optional[Note]:
        pk = _to_pk(note_id)
        if pk is None:
            return None
        with self._session() as db:
            row = db.get(models.Note, pk)
            return _note_from_row(row) if row else None

    def list_notes_by_owner(self, owner_id: Any) -> List[Note]:
        pk = _to_pk(owner_id, field="user_id")
        if pk is None:
            return []
        with self._session() as db:
            rows = (
                db.query(models.Note)
                .filter(models.Note.user_id == pk)
                .order_by(
                    models.Note.pinned.desc(),
                    models.Note.updated_at.desc(),
                    models.Note.id.asc(),
                )
                .all()
            )
            return [_note_from_row(row) for row in rows]

    def update_note(self, note_id: Any, fields: Dict[str, Any]) -> Optional[Note]:
        values = _coerce_note_values(fields)
        if "labels" in values:
            values["labels"] = json.dumps(values["labels"])
        pk = _to_pk(note_id)
        if pk is None:
            return None
        with self._session() as db:
            row = db.get(models.Note, pk)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = max(self._now(), ensure_app_tz(row.created_at))
            db.flush()
            return _note_from_row(row)

    def delete_note(self, note_id: Any) -> bool:
        pk = _to_pk(note_id)
        if pk is None:
            return False
        with self._session() as db:
            row = db.get(models.Note, pk)
            if row is None:
                return False
            db.delete(row)
            return True

    def create_label(self, owner_id: Any, fields: Dict[str, Any]) -> Label:
        values = _coerce_label_values(fields, creating=True)
        owner_pk = _owner_pk(owner_id)
        with self._session() as db:
            row = models.Label(user_id=owner_pk, created_at=self._now(), **values)
            db.add(row)
            db.flush()
            return _label_from_row(row)

    def get_label(self, label_id: Any) -> Optional[Label]:
        pk = _to_pk(label_id)
        if pk is None:
            return None
        with self._session() as db:
            row = db.get(models.Label, pk)
            return _label_from_row(row) if row else None

    def list_labels_by_owner(self, owner_id: Any) -> List[Label]:
        pk = _to_pk(owner_id, field="user_id")
        if pk is None:
            return []
        with self._session() as db:
            rows = (
                db.query(models.Label)
                .filter(models.Label.user_id == pk)
                .order_by(func.lower(models.Label.name), models.Label.id.asc())
                .all()
            )
            return [_label_from_row(row) for row in rows]

    def update_label(self, label_id: Any, fields: Dict[str, Any]) -> Optional[Label]:
        values = _coerce_label_values(fields)
        pk = _to_pk(label_id)
        if pk is None:
            return None
        with self._session() as db:
            row = db.get(models.Label, pk)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            db.flush()
            return _label_from_row(row)

    def delete_label(self, label_id: Any) -> bool:
        pk = _to_pk(label_id)
        if pk is None:
            return False
        with self._session() as db:
            row = db.get(models.Label, pk)
            if row is None:
                return False
            db.delete(row)
            return True


def build_store(backend: str = STORAGE_BACKEND, database_url: str = DATABASE_URL) -> Store:
    backend = (backend or "memory").strip().lower()
    if backend == "memory":
        logger.info("Storage backend: in-memory (data is lost on restart)")
        return MemoryStore()
    if backend in ("sql", "database"):
        logger.info("Storage backend: sql (%s)", database_url.split(":", 1)[0])
        return SqlStore.from_url(database_url)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
