"""Copilot conversation threads.

A conversation belongs to one (venture, phase) pair.  Messages are stored
twice: the normalized ``chat_messages`` log, which is authoritative and
ordered by ``seq``, and a capped JSON blob on the conversation row kept for
older readers.  Conversations written before the log existed only have the
blob; reads fall back to it and the next append backfills it into the log.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from founderkit.db import Store
from founderkit.errors import ConversationNotFound
from founderkit.models import ChatMessage, Conversation
from founderkit.utils import json_parse

log = logging.getLogger(__name__)

BLOB_MESSAGE_CAP = 50


def new_message(role: str, content: str) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "role": role,
        "content": content,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@dataclass
class ConversationThread:
    id: str
    venture_id: str
    phase_number: int
    messages: list[dict] = field(default_factory=list)
    created_at: datetime | None = None
    persisted: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_number": self.phase_number,
            "messages": [
                {"role": m["role"], "content": m["content"], "timestamp": m.get("timestamp", "")}
                for m in self.messages
            ],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _blob_messages(conv: Conversation) -> list[dict]:
    raw = json_parse(conv.messages_json, [])
    if not isinstance(raw, list):
        return []
    messages = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or "role" not in item:
            continue
        messages.append({
            # Legacy entries carry no id; derive a stable one from their position.
            "id": str(item.get("id") or f"{conv.id}:legacy:{index}"),
            "role": str(item["role"]),
            "content": str(item.get("content", "")),
            "timestamp": str(item.get("timestamp", "")),
        })
    return messages


def _log_messages(session: Session, conversation_id: str) -> list[dict]:
    rows = session.execute(
        select(ChatMessage).where(ChatMessage.conversation_id == conversation_id).order_by(ChatMessage.seq)
    ).scalars().all()
    return [{"id": r.id, "role": r.role, "content": r.content, "timestamp": r.timestamp} for r in rows]


def _read_messages(session: Session, conv: Conversation) -> list[dict]:
    """Normalized log first, legacy blob when the log is empty."""
    messages = _log_messages(session, conv.id)
    if messages:
        return messages
    return _blob_messages(conv)


class ConversationStore:
    def __init__(self, store: Store):
        self.store = store

    def _thread(self, session: Session, conv: Conversation) -> ConversationThread:
        return ConversationThread(
            id=conv.id,
            venture_id=conv.venture_id,
            phase_number=conv.phase_number,
            messages=_read_messages(session, conv),
            created_at=conv.created_at,
            persisted=True,
        )

    def get_or_create(self, venture_id: str, phase_number: int) -> ConversationThread:
        """Latest conversation for the pair, or a fresh unsaved thread."""
        with self.store.session() as session:
            conv = session.execute(
                select(Conversation)
                .where(Conversation.venture_id == venture_id, Conversation.phase_number == phase_number)
                .order_by(Conversation.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if conv is not None:
                return self._thread(session, conv)
        return ConversationThread(id=str(uuid.uuid4()), venture_id=venture_id, phase_number=phase_number)

    def get_by_id(self, conversation_id: str, venture_id: str) -> ConversationThread:
        with self.store.session() as session:
            conv = session.execute(
                select(Conversation).where(
                    Conversation.id == conversation_id, Conversation.venture_id == venture_id,
                )
            ).scalar_one_or_none()
            if conv is None:
                raise ConversationNotFound(conversation_id)
            return self._thread(session, conv)

    def append(
        self,
        thread: ConversationThread,
        new_messages: list[dict],
        system_prompt_hash: str = "",
    ) -> ConversationThread:
        """Persist *new_messages* onto *thread* in one transaction.

        Every message of the thread not yet in the log is inserted with the
        next ``seq``; ids already logged are skipped so redelivery is a no-op.
        """
        with self.store.session() as session:
            conv = session.get(Conversation, thread.id)
            if conv is None:
                conv = Conversation(
                    id=thread.id,
                    venture_id=thread.venture_id,
                    phase_number=thread.phase_number,
                    messages_json="[]",
                )
                session.add(conv)
                session.flush()
                existing: list[dict] = []
            else:
                existing = _read_messages(session, conv)

            known = {m["id"] for m in existing}
            merged = existing + [m for m in new_messages if m["id"] not in known]

            logged_ids = set(session.execute(
                select(ChatMessage.id).where(ChatMessage.conversation_id == conv.id)
            ).scalars().all())
            next_seq = (session.execute(
                select(func.max(ChatMessage.seq)).where(ChatMessage.conversation_id == conv.id)
            ).scalar() or 0) + 1

            added = 0
            for msg in merged:
                if msg["id"] in logged_ids:
                    continue
                session.add(ChatMessage(
                    id=msg["id"],
                    conversation_id=conv.id,
                    seq=next_seq,
                    role=msg["role"],
                    content=msg["content"],
                    timestamp=msg.get("timestamp") or datetime.now(UTC).isoformat(),
                ))
                logged_ids.add(msg["id"])
                next_seq += 1
                added += 1

            conv.messages_json = json.dumps(merged[-BLOB_MESSAGE_CAP:])
            if system_prompt_hash:
                conv.system_prompt_hash = system_prompt_hash
            session.commit()
            log.debug("Appended %d messages to conversation %s", added, conv.id)

            thread.messages = merged
            thread.created_at = conv.created_at
            thread.persisted = True
        return thread

    def history(self, venture_id: str, phase_number: int | None = None) -> list[ConversationThread]:
        """Conversations for a venture, newest first."""
        with self.store.session() as session:
            stmt = select(Conversation).where(Conversation.venture_id == venture_id)
            if phase_number is not None:
                stmt = stmt.where(Conversation.phase_number == phase_number)
            stmt = stmt.order_by(Conversation.created_at.desc())
            return [self._thread(session, conv) for conv in session.execute(stmt).scalars().all()]
