"""
File-backed conversation store.

One JSON array per conversation (<id>.json) plus one shared metadata index
(metadata.json) mapping every conversation id to its derived metadata.
The log is the source of truth; the index is recomputed on every write.

Concurrency:
  - appends to the same id are serialized by a per-id asyncio.Lock
  - the shared index has its own short lock around its read-modify-write
  - locks are always taken in that order (id, then index)

Blocking file I/O runs in worker threads; writes go to a temp file and are
moved into place with os.replace so readers never see a partial file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
import weakref
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable
from uuid import uuid4

from switchboard.errors import StoreError, ValidationError
from switchboard.models import Message, utc_now

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
DEFAULT_TITLE = "New Conversation"
TITLE_WORDS = 5

_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")
_PUNCT_RE = re.compile(r"[^\w\s]")


def generate_title(content: str, words: int = TITLE_WORDS) -> str:
    """First few words of the content with punctuation stripped."""
    clean = _PUNCT_RE.sub("", content or "").strip()
    return " ".join(clean.split()[:words]) or DEFAULT_TITLE


def truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def validate_conversation_id(conversation_id) -> str:
    """Reject ids that are not a plain file stem, or that collide with the index."""
    if (
        not isinstance(conversation_id, str)
        or not _ID_RE.match(conversation_id)
        or conversation_id == Path(METADATA_FILE).stem
    ):
        raise ValidationError(f"Invalid conversation id: {conversation_id!r}")
    return conversation_id


def _read_json(path: Path, default):
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, json.JSONDecodeError) as e:
        raise StoreError(f"Failed to read {path.name}: {e}") from e


def _write_json(path: Path, data) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except OSError as e:
        Path(tmp).unlink(missing_ok=True)
        raise StoreError(f"Failed to write {path.name}: {e}") from e


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StoreError(f"Failed to delete {path.name}: {e}") from e


@dataclass
class ConversationMetadata:
    """Derived, per-conversation summary kept in the shared index."""
    id: str
    created_at: str
    last_updated: str
    message_count: int
    title: str
    last_message: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, conversation_id: str, data: dict) -> "ConversationMetadata":
        return cls(
            id=conversation_id,
            created_at=data.get("created_at", ""),
            last_updated=data.get("last_updated", ""),
            message_count=int(data.get("message_count", 0)),
            title=data.get("title", DEFAULT_TITLE),
            last_message=data.get("last_message") or {},
        )

    def to_dict(self) -> dict:
        return asdict(self)


class ConversationStore:
    """Per-conversation JSON logs with a shared metadata index."""

    def __init__(
        self,
        directory: str | Path,
        max_messages: int = 50,
        preview_chars: int = 100,
        search_preview_chars: int = 200,
    ):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.max_messages = max_messages
        self.preview_chars = preview_chars
        self.search_preview_chars = search_preview_chars
        self._index_path = self.directory / METADATA_FILE
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._index_lock = asyncio.Lock()
        logger.info("Conversation store initialized at %s (cap %d messages)", self.directory, max_messages)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _path(self, conversation_id: str) -> Path:
        return self.directory / f"{validate_conversation_id(conversation_id)}.json"

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def _load_log(self, path: Path) -> list[dict]:
        log = await asyncio.to_thread(_read_json, path, [])
        if not isinstance(log, list):
            raise StoreError(f"Conversation log {path.name} is not a list")
        return log

    async def _read_index(self) -> dict:
        index = await asyncio.to_thread(_read_json, self._index_path, {})
        if not isinstance(index, dict):
            raise StoreError(f"{METADATA_FILE} is not an object")
        return index

    def _summarize(self, message: Message) -> dict:
        return {
            "role": message.role,
            "content": truncate(message.content, self.preview_chars),
            "timestamp": message.timestamp,
        }

    async def _reindex(
        self,
        conversation_id: str,
        messages: list[Message],
        count: int | None = None,
        retitle: bool = False,
    ) -> ConversationMetadata:
        """
        Update the index entry for one conversation.
        By default the count grows by len(messages); `count` replaces it.
        The title is set once from the first message ever stored.
        """
        async with self._index_lock:
            index = await self._read_index()
            entry = index.get(conversation_id)
            now = utc_now()
            if entry is None:
                entry = {"created_at": now, "message_count": 0}
                retitle = True
            if retitle:
                entry["title"] = generate_title(messages[0].content)
            if count is None:
                entry["message_count"] = int(entry.get("message_count", 0)) + len(messages)
            else:
                entry["message_count"] = count
            entry["last_updated"] = now
            entry["last_message"] = self._summarize(messages[-1])
            index[conversation_id] = entry
            await asyncio.to_thread(_write_json, self._index_path, index)
        return ConversationMetadata.from_dict(conversation_id, entry)

    async def _restore(self, path: Path, previous: list[dict] | None) -> None:
        """Put a log back the way it was after a failed index update."""
        try:
            if previous is None:
                await asyncio.to_thread(_unlink, path)
            else:
                await asyncio.to_thread(_write_json, path, previous)
        except StoreError as e:
            logger.error("Failed to roll back %s: %s", path.name, e)

    async def _reinstate(self, conversation_id: str, entry: dict) -> None:
        """Put an index entry back after its log could not be removed."""
        try:
            async with self._index_lock:
                index = await self._read_index()
                index[conversation_id] = entry
                await asyncio.to_thread(_write_json, self._index_path, index)
        except StoreError as e:
            logger.error("Failed to restore index entry for %s: %s", conversation_id, e)

    async def _write_log_and_index(
        self,
        conversation_id: str,
        build_log,
        messages: list[Message],
        **reindex_kwargs,
    ) -> ConversationMetadata:
        path = self._path(conversation_id)
        async with self._lock_for(conversation_id):
            existed = await asyncio.to_thread(path.exists)
            previous = await self._load_log(path)
            log = build_log(previous)[-self.max_messages:]
            await asyncio.to_thread(_write_json, path, log)
            try:
                return await self._reindex(conversation_id, messages, **reindex_kwargs)
            except StoreError:
                await self._restore(path, previous if existed else None)
                raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def append(self, conversation_id: str, message: Message) -> ConversationMetadata:
        """Append one message."""
        return await self.extend(conversation_id, [message])

    async def extend(self, conversation_id: str, messages: Iterable[Message]) -> ConversationMetadata:
        """
        Append messages as one atomic step: no other append to the same id
        can interleave, and log and index change together or not at all.
        """
        messages = list(messages)
        if not messages:
            raise ValidationError("Nothing to append")
        new_entries = [m.to_dict() for m in messages]
        meta = await self._write_log_and_index(
            conversation_id,
            lambda previous: previous + new_entries,
            messages,
        )
        logger.debug("Appended %d message(s) to %s (count=%d)",
                      len(messages), conversation_id, meta.message_count)
        return meta

    async def get(self, conversation_id: str) -> list[Message]:
        """Stored messages in order, or [] for an unknown id."""
        log = await self._load_log(self._path(conversation_id))
        try:
            return [Message.from_dict(m) for m in log]
        except ValidationError as e:
            raise StoreError(f"Corrupt conversation {conversation_id}: {e.message}",
                             conversation_id) from e

    async def metadata(self, conversation_id: str) -> ConversationMetadata | None:
        self._path(conversation_id)
        index = await self._read_index()
        entry = index.get(conversation_id)
        return ConversationMetadata.from_dict(conversation_id, entry) if entry else None

    async def list(self, limit: int = 20, offset: int = 0) -> list[ConversationMetadata]:
        """Metadata ordered by most recently updated."""
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative")
        index = await self._read_index()
        ordered = sorted(
            index.items(),
            key=lambda item: (item[1].get("last_updated", ""), item[0]),
            reverse=True,
        )
        return [
            ConversationMetadata.from_dict(cid, data)
            for cid, data in ordered[offset:offset + limit]
        ]

    async def delete(self, conversation_id: str) -> bool:
        """Remove a conversation. Returns False (not an error) if it never existed."""
        path = self._path(conversation_id)
        async with self._lock_for(conversation_id):
            async with self._index_lock:
                index = await self._read_index()
                entry = index.pop(conversation_id, None)
                if entry is not None:
                    await asyncio.to_thread(_write_json, self._index_path, index)
            try:
                had_log = await asyncio.to_thread(_unlink, path)
            except StoreError:
                if entry is not None:
                    await self._reinstate(conversation_id, entry)
                raise
        had_entry = entry is not None
        if had_entry or had_log:
            logger.info("Deleted conversation %s", conversation_id)
        return had_entry or had_log

    async def search(self, query: str, limit: int = 10) -> list[dict]:
        """
        Case-insensitive substring search over every stored message.
        Returns one hit per conversation, most matches first.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query cannot be empty")
        needle = query.lower()
        index = await self._read_index()

        paths = await asyncio.to_thread(
            lambda: sorted(p for p in self.directory.glob("*.json") if p.name != METADATA_FILE)
        )

        results = []
        for path in paths:
            try:
                log = await self._load_log(path)
            except StoreError as e:
                logger.warning("Skipping unreadable conversation %s: %s", path.name, e)
                continue

            hits = [m for m in log if needle in str(m.get("content", "")).lower()]
            if not hits:
                continue
            cid = path.stem
            results.append({
                "conversation_id": cid,
                "title": (index.get(cid) or {}).get("title", DEFAULT_TITLE),
                "matches": len(hits),
                "preview": truncate(str(hits[0].get("content", "")), self.search_preview_chars),
            })

        results.sort(key=lambda r: r["matches"], reverse=True)
        return results[:limit]

    async def stats(self) -> dict:
        index = await self._read_index()
        total_conversations = len(index)
        total_messages = sum(int(e.get("message_count", 0)) for e in index.values())
        average = int(total_messages / total_conversations + 0.5) if total_conversations else 0
        return {
            "total_conversations": total_conversations,
            "total_messages": total_messages,
            "average_messages_per_conversation": average,
        }

    async def export(self, conversation_id: str, format: str = "json") -> str:
        """Export as an indented JSON array ("json") or a plain transcript ("txt")."""
        fmt = (format or "json").lower()
        if fmt not in ("json", "txt"):
            raise ValidationError(f"Unsupported export format: {format!r}")
        messages = await self.get(conversation_id)
        if fmt == "txt":
            return "\n".join(
                f"[{m.timestamp}] {m.role.upper()}: {m.content}" for m in messages
            )
        return json.dumps([m.to_dict() for m in messages], indent=2, ensure_ascii=False)

    async def import_conversation(
        self,
        messages: Iterable[Message | dict],
        conversation_id: str | None = None,
    ) -> str:
        """
        Store a caller-supplied sequence, replacing any existing log for the id.
        Returns the conversation id (a new one when none is given).
        """
        msgs = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
        if not msgs:
            raise ValidationError("Cannot import an empty conversation")
        conversation_id = conversation_id or uuid4().hex
        entries = [m.to_dict() for m in msgs]
        await self._write_log_and_index(
            conversation_id,
            lambda previous: entries,
            msgs,
            count=len(msgs),
            retitle=True,
        )
        logger.info("Imported %d message(s) into %s", len(msgs), conversation_id)
        return conversation_id
