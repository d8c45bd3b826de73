"""PostgreSQL implementation of :class:`~chatsync.storage.base.ConversationStore`."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

import numpy as np
import psycopg
from pgvector.psycopg import register_vector
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..automation.schemas import (
    AutomationExecution,
    AutomationExecutionCreate,
    AutomationRule,
)
from ..conversations.schemas import (
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    MessageStatus,
)
from ..errors import (
    ContactInUse,
    ContactNotFound,
    ConversationNotFound,
    DedupConflict,
    KnowledgeEntryNotFound,
    RuleNotFound,
)
from ..knowledge.schemas import KnowledgeEntry
from .base import CONTACT_MUTABLE_FIELDS, CONVERSATION_MUTABLE_FIELDS, check_fields

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Create the tables used by the store when they do not exist yet.

    Every statement in ``schema.sql`` uses ``IF NOT EXISTS`` so this is safe to
    call on each start-up.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    conn.commit()


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, dict):
        return Jsonb(value)
    return value


def _vector(embedding: Optional[List[float]]) -> Optional[np.ndarray]:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32)


class PostgresConversationStore:
    """Store backed by PostgreSQL through psycopg 3.

    Each worker thread keeps its own autocommit connection; statements that
    must be atomic together run inside ``conn.transaction()``. ``close()``
    closes the connections of every thread.
    """

    def __init__(
        self,
        conninfo: str,
        *,
        connect: Callable[..., psycopg.Connection] = psycopg.connect,
    ) -> None:
        self._conninfo = conninfo
        self._connect = connect
        self._local = threading.local()
        self._opened: List[psycopg.Connection] = []
        self._opened_lock = threading.Lock()

    # Utility -----------------------------------------------------------------
    def _connection(self) -> psycopg.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None or conn.closed:
            conn = self._connect(self._conninfo, autocommit=True)
            register_vector(conn)
            self._local.conn = conn
            with self._opened_lock:
                self._opened = [c for c in self._opened if not c.closed]
                self._opened.append(conn)
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        conn = self._connection()
        with conn.cursor(row_factory=dict_row) as cur:
            yield cur

    def ensure_schema(self) -> None:
        with psycopg.connect(self._conninfo) as conn:
            ensure_schema(conn)

    def close(self) -> None:
        with self._opened_lock:
            opened, self._opened = self._opened, []
        for conn in opened:
            if not conn.closed:
                conn.close()
        logger.debug("Closed %d database connection(s)", len(opened))

    # Hydration ---------------------------------------------------------------
    @staticmethod
    def _contact(row: Dict[str, Any]) -> Contact:
        return Contact(**row)

    @staticmethod
    def _conversation(row: Dict[str, Any]) -> Conversation:
        return Conversation(**row)

    @staticmethod
    def _message(row: Dict[str, Any]) -> Message:
        return Message(**row)

    @staticmethod
    def _knowledge(row: Dict[str, Any]) -> KnowledgeEntry:
        data = dict(row)
        embedding = data.pop("embedding", None)
        if embedding is not None:
            data["embedding"] = [float(x) for x in embedding]
        return KnowledgeEntry(**data)

    @staticmethod
    def _rule(row: Dict[str, Any]) -> AutomationRule:
        data = dict(row)
        data["trigger"] = {"type": data.pop("trigger_type"), "value": data.pop("trigger_value")}
        data["action"] = {"type": data.pop("action_type"), "value": data.pop("action_value")}
        return AutomationRule(**data)

    # Contacts ----------------------------------------------------------------
    def get_or_create_contact(self, candidate: Contact) -> Tuple[Contact, bool]:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO contacts (id, phone, name, tags, is_online, metadata, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (phone) DO NOTHING
                RETURNING *
                """,
                (
                    candidate.id,
                    candidate.phone,
                    candidate.name,
                    sorted(candidate.tags),
                    candidate.is_online,
                    Jsonb(candidate.metadata),
                    candidate.created_at,
                    candidate.updated_at,
                ),
            )
            row = cur.fetchone()
            if row is not None:
                return self._contact(row), True
            cur.execute("SELECT * FROM contacts WHERE phone = %s", (candidate.phone,))
            row = cur.fetchone()
        return self._contact(row), False

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM contacts WHERE id = %s", (contact_id,))
            row = cur.fetchone()
        return self._contact(row) if row else None

    def get_contact_by_phone(self, phone: str) -> Optional[Contact]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM contacts WHERE phone = %s", (phone,))
            row = cur.fetchone()
        return self._contact(row) if row else None

    def update_contact(self, contact_id: str, **changes: Any) -> Contact:
        check_fields(changes, CONTACT_MUTABLE_FIELDS)
        assignments = ", ".join(f"{column} = %s" for column in changes)
        params = [_db_value(v) for v in changes.values()]
        set_clause = f"{assignments}, updated_at = now()" if assignments else "updated_at = now()"
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE contacts SET {set_clause} WHERE id = %s RETURNING *",
                (*params, contact_id),
            )
            row = cur.fetchone()
        if row is None:
            raise ContactNotFound(contact_id)
        return self._contact(row)

    def delete_contact(self, contact_id: str) -> None:
        try:
            with self._cursor() as cur:
                cur.execute("DELETE FROM contacts WHERE id = %s", (contact_id,))
                deleted = cur.rowcount
        except psycopg.errors.ForeignKeyViolation as exc:
            raise ContactInUse(contact_id) from exc
        if not deleted:
            raise ContactNotFound(contact_id)

    # Conversations -----------------------------------------------------------
    def get_or_create_conversation(self, candidate: Conversation) -> Tuple[Conversation, bool]:
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO conversations
                        (id, contact_id, status, priority, sentiment, assigned_agent,
                         last_message_at, tags, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (contact_id) DO NOTHING
                    RETURNING *
                    """,
                    (
                        candidate.id,
                        candidate.contact_id,
                        candidate.status.value,
                        candidate.priority.value,
                        _db_value(candidate.sentiment),
                        candidate.assigned_agent,
                        candidate.last_message_at,
                        sorted(candidate.tags),
                        candidate.created_at,
                        candidate.updated_at,
                    ),
                )
                row = cur.fetchone()
                if row is not None:
                    return self._conversation(row), True
                cur.execute(
                    "SELECT * FROM conversations WHERE contact_id = %s",
                    (candidate.contact_id,),
                )
                row = cur.fetchone()
        except psycopg.errors.ForeignKeyViolation as exc:
            raise ContactNotFound(candidate.contact_id) from exc
        return self._conversation(row), False

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s", (conversation_id,))
            row = cur.fetchone()
        return self._conversation(row) if row else None

    def get_conversation_by_contact(self, contact_id: str) -> Optional[Conversation]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE contact_id = %s", (contact_id,))
            row = cur.fetchone()
        return self._conversation(row) if row else None

    def list_conversations(
        self, limit: int = 50, status: Optional[ConversationStatus] = None
    ) -> List[Conversation]:
        query = "SELECT * FROM conversations"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = %s"
            params.append(_db_value(status))
        query += " ORDER BY COALESCE(last_message_at, created_at) DESC, id DESC LIMIT %s"
        params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._conversation(row) for row in rows]

    def update_conversation(self, conversation_id: str, **changes: Any) -> Conversation:
        check_fields(changes, CONVERSATION_MUTABLE_FIELDS)
        assignments = ", ".join(f"{column} = %s" for column in changes)
        params = [_db_value(v) for v in changes.values()]
        set_clause = f"{assignments}, updated_at = now()" if assignments else "updated_at = now()"
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE conversations SET {set_clause} WHERE id = %s RETURNING *",
                (*params, conversation_id),
            )
            row = cur.fetchone()
        if row is None:
            raise ConversationNotFound(conversation_id)
        return self._conversation(row)

    def touch_conversation(self, conversation_id: str, last_message_at: datetime) -> Conversation:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET last_message_at = %s, updated_at = now()
                WHERE id = %s AND (last_message_at IS NULL OR last_message_at < %s)
                RETURNING *
                """,
                (last_message_at, conversation_id, last_message_at),
            )
            row = cur.fetchone()
        if row is not None:
            return self._conversation(row)
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def delete_conversation(self, conversation_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM conversations WHERE id = %s", (conversation_id,))
            deleted = cur.rowcount
        if not deleted:
            raise ConversationNotFound(conversation_id)

    # Messages ----------------------------------------------------------------
    def insert_message(self, message: Message) -> Message:
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO messages
                        (id, conversation_id, provider_message_id, dedup_key, direction,
                         body, type, status, "timestamp", metadata)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (conversation_id, dedup_key) DO NOTHING
                    RETURNING *
                    """,
                    (
                        message.id,
                        message.conversation_id,
                        message.provider_message_id,
                        message.dedup_key,
                        message.direction.value,
                        message.body,
                        message.type.value,
                        message.status.value,
                        message.timestamp,
                        Jsonb(message.metadata),
                    ),
                )
                row = cur.fetchone()
        except psycopg.errors.ForeignKeyViolation as exc:
            raise ConversationNotFound(message.conversation_id) from exc
        if row is None:
            raise DedupConflict(message.conversation_id, message.dedup_key)
        return self._message(row)

    def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        if limit is None:
            query = """
                SELECT * FROM messages WHERE conversation_id = %s
                ORDER BY "timestamp" ASC, id ASC
            """
            params: tuple[Any, ...] = (conversation_id,)
        else:
            query = """
                SELECT * FROM (
                    SELECT * FROM messages WHERE conversation_id = %s
                    ORDER BY "timestamp" DESC, id DESC LIMIT %s
                ) recent
                ORDER BY "timestamp" ASC, id ASC
            """
            params = (conversation_id, limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._message(row) for row in rows]

    def get_message_by_provider_id(self, provider_message_id: str) -> Optional[Message]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM messages WHERE provider_message_id = %s
                ORDER BY "timestamp" ASC LIMIT 1
                """,
                (provider_message_id,),
            )
            row = cur.fetchone()
        return self._message(row) if row else None

    def update_message_status(self, message_id: str, status: MessageStatus) -> Message:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE messages SET status = %s WHERE id = %s RETURNING *",
                (_db_value(status), message_id),
            )
            row = cur.fetchone()
        if row is None:
            raise KeyError(message_id)
        return self._message(row)

    def has_inbound_messages(self, conversation_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT EXISTS (
                    SELECT 1 FROM messages
                    WHERE conversation_id = %s AND direction = 'inbound'
                ) AS found
                """,
                (conversation_id,),
            )
            row = cur.fetchone()
        return bool(row and row["found"])

    # Knowledge entries -------------------------------------------------------
    def create_knowledge_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO knowledge_entries
                    (id, title, content, category, tags, is_active, embedding, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    entry.id,
                    entry.title,
                    entry.content,
                    entry.category,
                    list(entry.tags),
                    entry.is_active,
                    _vector(entry.embedding),
                    entry.created_at,
                    entry.updated_at,
                ),
            )
            row = cur.fetchone()
        return self._knowledge(row)

    def get_knowledge_entry(self, entry_id: str) -> Optional[KnowledgeEntry]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM knowledge_entries WHERE id = %s", (entry_id,))
            row = cur.fetchone()
        return self._knowledge(row) if row else None

    def list_knowledge_entries(self, active_only: bool = False) -> List[KnowledgeEntry]:
        query = "SELECT * FROM knowledge_entries"
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY created_at ASC"
        with self._cursor() as cur:
            cur.execute(query)
            rows = cur.fetchall()
        return [self._knowledge(row) for row in rows]

    def update_knowledge_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE knowledge_entries
                SET title = %s, content = %s, category = %s, tags = %s,
                    is_active = %s, embedding = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (
                    entry.title,
                    entry.content,
                    entry.category,
                    list(entry.tags),
                    entry.is_active,
                    _vector(entry.embedding),
                    entry.updated_at,
                    entry.id,
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise KnowledgeEntryNotFound(entry.id)
        return self._knowledge(row)

    def delete_knowledge_entry(self, entry_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM knowledge_entries WHERE id = %s", (entry_id,))
            deleted = cur.rowcount
        if not deleted:
            raise KnowledgeEntryNotFound(entry_id)

    # Automation rules --------------------------------------------------------
    def save_rule(self, rule: AutomationRule) -> AutomationRule:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO automation_rules
                    (id, name, description, trigger_type, trigger_value, action_type,
                     action_value, is_active, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    trigger_type = EXCLUDED.trigger_type,
                    trigger_value = EXCLUDED.trigger_value,
                    action_type = EXCLUDED.action_type,
                    action_value = EXCLUDED.action_value,
                    is_active = EXCLUDED.is_active,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
                """,
                (
                    rule.id,
                    rule.name,
                    rule.description,
                    rule.trigger.type,
                    rule.trigger.value,
                    rule.action.type,
                    rule.action.value,
                    rule.is_active,
                    rule.created_at,
                    rule.updated_at,
                ),
            )
            row = cur.fetchone()
        return self._rule(row)

    def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM automation_rules WHERE id = %s", (rule_id,))
            row = cur.fetchone()
        return self._rule(row) if row else None

    def list_rules(self, active_only: bool = False) -> List[AutomationRule]:
        query = "SELECT * FROM automation_rules"
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY ordinal ASC"
        with self._cursor() as cur:
            cur.execute(query)
            rows = cur.fetchall()
        return [self._rule(row) for row in rows]

    def delete_rule(self, rule_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM automation_rules WHERE id = %s", (rule_id,))
            deleted = cur.rowcount
        if not deleted:
            raise RuleNotFound(rule_id)

    def record_execution(self, payload: AutomationExecutionCreate) -> AutomationExecution:
        conn = self._connection()
        with conn.transaction():
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    INSERT INTO automation_executions
                        (id, rule_id, conversation_id, message_id, action_type, status,
                         error_message, execution_time_ms)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        uuid4().hex,
                        payload.rule_id,
                        payload.conversation_id,
                        payload.message_id,
                        payload.action_type,
                        payload.status.value,
                        payload.error_message,
                        payload.execution_time_ms,
                    ),
                )
                row = cur.fetchone()
                cur.execute(
                    """
                    UPDATE automation_rules
                    SET execution_count = execution_count + 1, last_executed_at = %s
                    WHERE id = %s
                    """,
                    (row["executed_at"], payload.rule_id),
                )
        return AutomationExecution(**row)

    def list_executions(self, rule_id: str, limit: int = 20) -> List[AutomationExecution]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM automation_executions
                WHERE rule_id = %s
                ORDER BY executed_at DESC
                LIMIT %s
                """,
                (rule_id, limit),
            )
            rows = cur.fetchall()
        return [AutomationExecution(**row) for row in rows]
