"""Note/label service: ownership-checked operations on top of a ``Store``.

Every operation on an existing note or label loads it first and answers
``NotFoundError`` before ``ForbiddenError``. Label ids stay on a note after
the label is deleted; they are dropped from what the service returns, so a
caller only ever sees labels that exist and belong to them.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Set

from .entities import TOGGLE_FIELDS, Label, Note
from .errors import ForbiddenError, NotFoundError, ServiceUnavailableError, ValidationError
from .formatter import Block, format_text
from .store import Store, normalize_id

logger = logging.getLogger(__name__)

SUMMARY_FAILED_MESSAGE = "Failed to generate summary"
SUMMARY_UNAVAILABLE_MESSAGE = "AI summary service is unavailable"
LABEL_ACTIONS = ("add", "remove")


def _require_text(values: Dict[str, Any], key: str) -> None:
    if key not in values:
        return
    value = values[key]
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} must be a non-empty string", field=key)


def _require_bool(values: Dict[str, Any], key: str) -> None:
    if key in values and not isinstance(values[key], bool):
        raise ValidationError(f"{key} must be true or false", field=key)


def _validate_note_fields(fields: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    if fields is None:
        fields = {}
    if not isinstance(fields, dict):
        raise ValidationError("Note fields must be an object")
    values = dict(fields)
    if creating:
        for key in ("title", "content"):
            if key not in values:
                raise ValidationError(f"{key} is required", field=key)
    _require_text(values, "title")
    _require_text(values, "content")
    _require_bool(values, "pinned")
    _require_bool(values, "archived")
    return values


def _validate_label_fields(fields: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    if fields is None:
        fields = {}
    if not isinstance(fields, dict):
        raise ValidationError("Label fields must be an object")
    values = dict(fields)
    if creating and "name" not in values:
        raise ValidationError("name is required", field="name")
    _require_text(values, "name")
    return values


class NoteService:
    def __init__(self, store: Store, summarizer: Any = None):
        self.store = store
        # Anything with ``summarize(text) -> str``; None disables summaries.
        self.summarizer = summarizer

    # -- lookups --

    def _owned_note(self, owner_id: str, note_id: Any) -> Note:
        note_id = normalize_id(note_id, field="note_id")
        note = self.store.get_note(note_id)
        if note is None:
            raise NotFoundError("Note", note_id)
        if note.user_id != owner_id:
            raise ForbiddenError()
        return note

    def _owned_label(self, owner_id: str, label_id: Any) -> Label:
        label_id = normalize_id(label_id, field="label_id")
        label = self.store.get_label(label_id)
        if label is None:
            raise NotFoundError("Label", label_id)
        if label.user_id != owner_id:
            raise ForbiddenError()
        return label

    def _owned_label_ids(self, owner_id: str) -> Set[str]:
        return {label.id for label in self.store.list_labels_by_owner(owner_id)}

    def _visible(self, note: Note, owned_label_ids: Optional[Set[str]] = None) -> Note:
        if owned_label_ids is None:
            owned_label_ids = self._owned_label_ids(note.user_id)
        labels = [label_id for label_id in note.labels if label_id in owned_label_ids]
        if labels == note.labels:
            return note
        return replace(note, labels=labels)

    # -- summaries --

    def _attach_summary(self, note: Note) -> Note:
        if self.summarizer is None:
            return note
        try:
            summary = self.summarizer.summarize(note.content)
        except Exception:
            logger.exception("Summary generation failed for note_id=%s", note.id)
            return replace(note, summary_error=SUMMARY_FAILED_MESSAGE)
        updated = self.store.update_note(note.id, {"summary": summary})
        if updated is None:
            # Deleted while the summary was being generated.
            return replace(note, summary_error=SUMMARY_FAILED_MESSAGE)
        return updated

    # -- notes --

    def list_notes(
        self,
        owner_id: Any,
        archived: Optional[bool] = False,
        label_id: Any = None,
    ) -> List[Note]:
        owner_id = normalize_id(owner_id, field="user_id")
        wanted_archived = bool(archived)
        owned_label_ids = self._owned_label_ids(owner_id)
        notes = [
            self._visible(note, owned_label_ids)
            for note in self.store.list_notes_by_owner(owner_id)
            if note.archived == wanted_archived
        ]
        # An empty filter means no filter.
        if label_id is not None and str(label_id).strip():
            label_id = normalize_id(label_id, field="label_id")
            notes = [note for note in notes if label_id in note.labels]
        return notes

    def get_note(self, owner_id: Any, note_id: Any) -> Note:
        owner_id = normalize_id(owner_id, field="user_id")
        return self._visible(self._owned_note(owner_id, note_id))

    def create_note(
        self,
        owner_id: Any,
        fields: Dict[str, Any],
        generate_summary: bool = False,
    ) -> Note:
        owner_id = normalize_id(owner_id, field="user_id")
        values = _validate_note_fields(fields, creating=True)
        note = self.store.create_note(owner_id, values)
        logger.info("Created note id=%s user_id=%s", note.id, owner_id)
        if generate_summary:
            note = self._attach_summary(note)
        return self._visible(note)

    def update_note(
        self,
        owner_id: Any,
        note_id: Any,
        fields: Dict[str, Any],
        generate_summary: bool = False,
    ) -> Note:
        owner_id = normalize_id(owner_id, field="user_id")
        values = _validate_note_fields(fields, creating=False)
        note = self._owned_note(owner_id, note_id)
        updated = self.store.update_note(note.id, values)
        if updated is None:
            raise NotFoundError("Note", note.id)
        if generate_summary:
            updated = self._attach_summary(updated)
        return self._visible(updated)

    def delete_note(self, owner_id: Any, note_id: Any) -> None:
        owner_id = normalize_id(owner_id, field="user_id")
        note = self._owned_note(owner_id, note_id)
        if not self.store.delete_note(note.id):
            raise NotFoundError("Note", note.id)
        logger.info("Deleted note id=%s user_id=%s", note.id, owner_id)

    def toggle_field(self, owner_id: Any, note_id: Any, field: str) -> Note:
        if field not in TOGGLE_FIELDS:
            raise ValidationError(f"Cannot toggle field: {field}", field="field")
        owner_id = normalize_id(owner_id, field="user_id")
        note = self._owned_note(owner_id, note_id)
        updated = self.store.update_note(note.id, {field: not getattr(note, field)})
        if updated is None:
            raise NotFoundError("Note", note.id)
        return self._visible(updated)

    def set_label_on_note(self, owner_id: Any, note_id: Any, label_id: Any, action: str) -> Note:
        if action not in LABEL_ACTIONS:
            raise ValidationError("Action must be 'add' or 'remove'", field="action")
        owner_id = normalize_id(owner_id, field="user_id")
        note_id = normalize_id(note_id, field="note_id")
        label_id = normalize_id(label_id, field="label_id")

        note = self.store.get_note(note_id)
        if note is None:
            raise NotFoundError("Note", note_id)
        label = self.store.get_label(label_id)
        if label is None:
            raise NotFoundError("Label", label_id)
        if note.user_id != owner_id:
            raise ForbiddenError("Access denied for note")
        if label.user_id != owner_id:
            raise ForbiddenError("Access denied for label")

        if action == "add":
            if label.id in note.labels:
                return self._visible(note)
            labels = note.labels + [label.id]
        else:
            if label.id not in note.labels:
                return self._visible(note)
            labels = [existing for existing in note.labels if existing != label.id]
        updated = self.store.update_note(note.id, {"labels": labels})
        if updated is None:
            raise NotFoundError("Note", note.id)
        return self._visible(updated)

    def request_summary(self, owner_id: Any, note_id: Any) -> Note:
        if self.summarizer is None:
            raise ServiceUnavailableError(SUMMARY_UNAVAILABLE_MESSAGE)
        owner_id = normalize_id(owner_id, field="user_id")
        note = self._owned_note(owner_id, note_id)
        try:
            summary = self.summarizer.summarize(note.content)
        except Exception as exc:
            logger.exception("Summary generation failed for note_id=%s", note.id)
            raise ServiceUnavailableError(SUMMARY_FAILED_MESSAGE) from exc
        updated = self.store.update_note(note.id, {"summary": summary})
        if updated is None:
            raise NotFoundError("Note", note.id)
        return self._visible(updated)

    def render_note(self, owner_id: Any, note_id: Any) -> List[Block]:
        owner_id = normalize_id(owner_id, field="user_id")
        note = self._owned_note(owner_id, note_id)
        return format_text(note.content)

    # -- labels --

    def list_labels(self, owner_id: Any) -> List[Label]:
        return self.store.list_labels_by_owner(normalize_id(owner_id, field="user_id"))

    def get_label(self, owner_id: Any, label_id: Any) -> Label:
        owner_id = normalize_id(owner_id, field="user_id")
        return self._owned_label(owner_id, label_id)

    def create_label(self, owner_id: Any, fields: Dict[str, Any]) -> Label:
        owner_id = normalize_id(owner_id, field="user_id")
        values = _validate_label_fields(fields, creating=True)
        return self.store.create_label(owner_id, values)

    def update_label(self, owner_id: Any, label_id: Any, fields: Dict[str, Any]) -> Label:
        owner_id = normalize_id(owner_id, field="user_id")
        values = _validate_label_fields(fields, creating=False)
        # A missing or empty color always falls back to the default.
        values["color"] = values.get("color") or None
        label = self._owned_label(owner_id, label_id)
        updated = self.store.update_label(label.id, values)
        if updated is None:
            raise NotFoundError("Label", label.id)
        return updated

    def delete_label(self, owner_id: Any, label_id: Any) -> None:
        owner_id = normalize_id(owner_id, field="user_id")
        label = self._owned_label(owner_id, label_id)
        if not self.store.delete_label(label.id):
            raise NotFoundError("Label", label.id)
        logger.info("Deleted label id=%s user_id=%s", label.id, owner_id)
