"""Dataclasses representing documents, identities and selections."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

__all__ = [
    "DEFAULT_TITLE",
    "Document",
    "Identity",
    "SelectionRange",
    "parse_timestamp",
]

DEFAULT_TITLE = "Untitled Document"


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
    elif isinstance(value, (int, float)):
        # Epoch milliseconds, as written by browser storage.
        parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(slots=True, frozen=True)
class Identity:
    """Authenticated account the documents are synced for."""

    user_id: str
    token: str = ""

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Identity requires a user_id")


@dataclass(slots=True, frozen=True)
class SelectionRange:
    """Half-open ``[start, end)`` selection inside the document."""

    start: int = 0
    end: int = 0

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def as_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)


@dataclass(slots=True, frozen=True)
class Document:
    """A persisted writing document.

    ``id`` never changes after creation. ``owner_id`` is ``None`` for
    anonymous, local-only documents.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_TITLE
    content: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    owner_id: str | None = None

    @classmethod
    def new(cls, *, owner_id: str | None = None, title: str = DEFAULT_TITLE) -> "Document":
        now = _utcnow()
        return cls(title=title, created_at=now, updated_at=now, owner_id=owner_id)

    def with_content(self, content: str) -> "Document":
        return replace(self, content=content, updated_at=_utcnow())

    def with_title(self, title: str) -> "Document":
        return replace(self, title=title.strip() or DEFAULT_TITLE, updated_at=_utcnow())

    def with_owner(self, owner_id: str | None) -> "Document":
        return replace(self, owner_id=owner_id)

    def is_newer_than(self, other: "Document") -> bool:
        return self.updated_at > other.updated_at

    @property
    def char_count(self) -> int:
        return len(self.content)

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def to_record(self) -> Dict[str, Any]:
        """Return the JSON-friendly record used by the local cache and remote API."""

        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
            "ownerId": self.owner_id,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Document":
        """Build a document from a stored or remote record.

        Raises:
            ValueError: If required keys are missing or malformed.
        """

        try:
            document_id = record["id"]
            content = record["content"]
        except KeyError as exc:
            raise ValueError(f"Document record is missing '{exc.args[0]}'") from exc
        if not isinstance(document_id, str) or not document_id:
            raise ValueError("Document record has an invalid id")
        if not isinstance(content, str):
            raise ValueError(f"Document {document_id} has non-text content")
        now = _utcnow()
        created = record.get("createdAt")
        # Older exports only carry ``lastModified``.
        updated = record.get("updatedAt", record.get("lastModified"))
        owner = record.get("ownerId", record.get("userId"))
        return cls(
            id=document_id,
            title=str(record.get("title") or DEFAULT_TITLE),
            content=content,
            created_at=parse_timestamp(created) if created is not None else now,
            updated_at=parse_timestamp(updated) if updated is not None else now,
            owner_id=str(owner) if owner else None,
        )
