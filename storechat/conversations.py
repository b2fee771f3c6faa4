"""Conversation history and message persistence for the chat endpoint.

ConversationStore is the interface the API depends on; SqlConversationStore
implements it over the conversations and messages tables.

- get_or_create: resolve the widget's conversation id to a row id, creating the row.
- recent_messages: last N user/assistant turns, oldest first, for the prompt.
- save_message: append one turn and bump the conversation's counters.

Write failures surface as MESSAGE_SAVE_FAILED; a failed history read degrades
to an empty history.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from storechat.db import SessionFactory, session_scope
from storechat.errors import StoreChatError
from storechat.models import Conversation, Message

logger = logging.getLogger(__name__)

HISTORY_ROLES = ("user", "assistant")


def save_failed(message: str, cause: Exception) -> StoreChatError:
    logger.error("%s: %s", message, cause)
    return StoreChatError(message, code="MESSAGE_SAVE_FAILED", status_code=500)


class ConversationStore(Protocol):
    def get_or_create(self, site_id: str, conversation_id: str, visitor_id: Optional[str] = None) -> str:
        ...

    def recent_messages(self, conversation_pk: str, limit: int) -> List[Dict[str, str]]:
        ...

    def save_message(
        self,
        site_id: str,
        conversation_pk: str,
        role: str,
        content: str,
        content_json: Optional[Dict[str, Any]] = None,
        token_usage: Optional[Dict[str, int]] = None,
        model: Optional[str] = None,
    ) -> None:
        ...


class SqlConversationStore:
    """ConversationStore over the conversations and messages tables."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_or_create(self, site_id: str, conversation_id: str, visitor_id: Optional[str] = None) -> str:
        stmt = (
            pg_insert(Conversation)
            .values(id=str(uuid.uuid4()), site_id=site_id, conversation_id=conversation_id, visitor_id=visitor_id)
            .on_conflict_do_nothing(index_elements=[Conversation.site_id, Conversation.conversation_id])
        )
        try:
            with session_scope(self.session_factory) as session:
                session.execute(stmt)
                return str(
                    session.execute(
                        select(Conversation.id).where(
                            Conversation.site_id == site_id, Conversation.conversation_id == conversation_id
                        )
                    ).scalar_one()
                )
        except SQLAlchemyError as e:
            raise save_failed("Failed to start conversation", e) from e

    def recent_messages(self, conversation_pk: str, limit: int) -> List[Dict[str, str]]:
        if limit <= 0:
            return []
        session = self.session_factory()
        try:
            rows = session.execute(
                select(Message.role, Message.content_text)
                .where(Message.conversation_id == conversation_pk, Message.role.in_(HISTORY_ROLES))
                .order_by(Message.created_at.desc())
                .limit(limit)
            ).all()
        except SQLAlchemyError as e:
            logger.error("Failed to load history for conversation %s: %s", conversation_pk, e)
            return []
        finally:
            session.close()
        return [{"role": role, "content": text} for role, text in reversed(rows) if text]

    def save_message(
        self,
        site_id: str,
        conversation_pk: str,
        role: str,
        content: str,
        content_json: Optional[Dict[str, Any]] = None,
        token_usage: Optional[Dict[str, int]] = None,
        model: Optional[str] = None,
    ) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.add(
                    Message(
                        conversation_id=conversation_pk,
                        site_id=site_id,
                        role=role,
                        content_text=content,
                        content_json=content_json,
                        token_usage=token_usage,
                        model=model,
                    )
                )
                session.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_pk)
                    .values(
                        message_count=Conversation.message_count + 1,
                        last_message_at=func.now(),
                        updated_at=func.now(),
                    )
                )
        except SQLAlchemyError as e:
            raise save_failed(f"Failed to save {role} message", e) from e
