"""SQLite schema management (code-first approach).

Tables are created idempotently on startup. Timestamps are stored as ISO-8601
UTC strings so that lexical order equals chronological order.
"""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema, in creation order
COLLECTIONS = [
    "users",
    "squads",
    "communities",
    "squad_members",
    "community_members",
    "friendships",
    "ai_settings",
    "tasks",
    "task_completions",
    "verification_queue",
    "xp_transactions",
    "notifications",
    "user_presence",
    "conversations",
    "conversation_participants",
    "messages",
]


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    username TEXT NOT NULL UNIQUE,
    display_name TEXT,
    avatar_url TEXT,
    total_xp INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    last_activity_date TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS squads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS communities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    xp_multiplier REAL NOT NULL DEFAULT 1.0 CHECK (xp_multiplier >= 1.0 AND xp_multiplier <= 2.0),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS squad_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    squad_id INTEGER NOT NULL REFERENCES squads(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('owner', 'admin', 'moderator', 'member')),
    UNIQUE (squad_id, user_id)
);

CREATE TABLE IF NOT EXISTS community_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    community_id INTEGER NOT NULL REFERENCES communities(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('owner', 'admin', 'moderator', 'member')),
    UNIQUE (community_id, user_id)
);

CREATE TABLE IF NOT EXISTS friendships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    requester_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    addressee_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'accepted', 'blocked')),
    created_at TEXT NOT NULL,
    UNIQUE (requester_id, addressee_id)
);

CREATE TABLE IF NOT EXISTS ai_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    target_kind TEXT NOT NULL CHECK (target_kind IN ('squad', 'community')),
    target_id INTEGER NOT NULL,
    provider TEXT NOT NULL,
    model TEXT,
    api_key_encrypted TEXT NOT NULL,
    confidence_threshold REAL NOT NULL DEFAULT 0.8,
    verification_prompt TEXT,
    UNIQUE (target_kind, target_id)
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    category TEXT,
    difficulty TEXT NOT NULL DEFAULT 'medium',
    base_xp INTEGER NOT NULL DEFAULT 50,
    frequency TEXT NOT NULL DEFAULT 'daily',
    visibility TEXT NOT NULL DEFAULT 'private',
    squad_id INTEGER REFERENCES squads(id) ON DELETE SET NULL,
    community_id INTEGER REFERENCES communities(id) ON DELETE SET NULL,
    requires_proof INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_completed_date TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    CHECK (squad_id IS NULL OR community_id IS NULL),
    CHECK (longest_streak >= current_streak)
);

CREATE TABLE IF NOT EXISTS task_completions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    completion_day TEXT NOT NULL,
    completed_at TEXT NOT NULL,
    proof_url TEXT,
    proof_type TEXT,
    verification_status TEXT NOT NULL
        CHECK (verification_status IN ('pending', 'verified', 'rejected', 'auto_verified')),
    xp_earned INTEGER NOT NULL DEFAULT 0,
    streak_bonus INTEGER NOT NULL DEFAULT 0,
    multiplier_bonus INTEGER NOT NULL DEFAULT 0,
    ai_confidence REAL,
    rejection_reason TEXT,
    verified_by_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
    verified_at TEXT,
    UNIQUE (task_id, completion_day)
);

CREATE TABLE IF NOT EXISTS verification_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    completion_id INTEGER NOT NULL UNIQUE REFERENCES task_completions(id) ON DELETE CASCADE,
    target_kind TEXT NOT NULL CHECK (target_kind IN ('squad', 'community')),
    target_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'verified', 'rejected')),
    priority INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    resolved_at TEXT
);

CREATE TABLE IF NOT EXISTS xp_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    amount INTEGER NOT NULL,
    source TEXT NOT NULL,
    source_id INTEGER,
    base_amount INTEGER,
    streak_multiplier INTEGER,
    community_multiplier REAL,
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT,
    reference_type TEXT,
    reference_id INTEGER,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_presence (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    status TEXT NOT NULL DEFAULT 'offline' CHECK (status IN ('online', 'offline', 'busy', 'away')),
    last_seen TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_participants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_read_at TEXT,
    UNIQUE (conversation_id, user_id)
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    content TEXT NOT NULL DEFAULT '',
    image_url TEXT,
    message_type TEXT NOT NULL DEFAULT 'text' CHECK (message_type IN ('text', 'image')),
    reply_to_id INTEGER REFERENCES messages(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    edited_at TEXT,
    deleted_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks (user_id);
CREATE INDEX IF NOT EXISTS idx_queue_status_target ON verification_queue (status, target_kind, target_id);
CREATE INDEX IF NOT EXISTS idx_xp_user_created ON xp_transactions (user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_conversation_created ON messages (conversation_id, created_at);
CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, created_at);
"""


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not already exist."""
    conn = await db_client.get_connection(db_path=db_path)
    await conn.executescript(SCHEMA_SQL)
    logger.info("Schema initialized", extra={"collections": len(COLLECTIONS)})
