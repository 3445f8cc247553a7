"""
Schema migrations for the SQLite backend.

Migrations are applied in order and recorded in ``schema_migrations`` so
running them again is a no-op.
"""

import logging
from typing import List, Tuple

from .sqlite import SQLiteConnection

logger = logging.getLogger(__name__)


MIGRATIONS: List[Tuple[int, str, str]] = [
    (1, "initial_schema", """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            account_name TEXT NOT NULL DEFAULT '',
            account_resource TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            access_token TEXT,
            refresh_token TEXT,
            token_expires_at TEXT,
            settings TEXT NOT NULL DEFAULT '{}',
            last_sync TEXT,
            disconnected_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);
        CREATE INDEX IF NOT EXISTS idx_accounts_active ON accounts(is_active);

        CREATE TABLE IF NOT EXISTS locations (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL REFERENCES accounts(id),
            user_id TEXT,
            resource_name TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            address TEXT,
            phone TEXT,
            category TEXT,
            website TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            metadata TEXT NOT NULL DEFAULT '{}',
            updated_at TEXT NOT NULL,
            UNIQUE (account_id, resource_name)
        );

        CREATE TABLE IF NOT EXISTS provider_records (
            entity_type TEXT NOT NULL,
            external_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            location_id TEXT,
            payload TEXT NOT NULL DEFAULT '{}',
            updated_at TEXT NOT NULL,
            PRIMARY KEY (entity_type, external_id)
        );
        CREATE INDEX IF NOT EXISTS idx_provider_records_account
            ON provider_records(account_id, entity_type);

        CREATE TABLE IF NOT EXISTS publishable_entities (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            user_id TEXT NOT NULL,
            location_id TEXT NOT NULL,
            target_resource TEXT,
            payload TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'draft',
            provider_resource_id TEXT,
            error_code TEXT,
            error_message TEXT,
            provider_error TEXT,
            published_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS action_log (
            id TEXT PRIMARY KEY,
            action TEXT NOT NULL,
            status TEXT NOT NULL,
            details TEXT NOT NULL DEFAULT '{}',
            user_id TEXT,
            account_id TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_action_log_created ON action_log(created_at);
    """),
]


async def run_migrations(connection: SQLiteConnection) -> int:
    """
    Apply all pending migrations.

    Args:
        connection: Open SQLite connection pool

    Returns:
        Number of migrations applied
    """
    await connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    rows = await connection.fetch_all("SELECT version FROM schema_migrations")
    applied = {row["version"] for row in rows}

    count = 0
    for version, name, script in MIGRATIONS:
        if version in applied:
            continue
        logger.info(f"Applying migration {version}: {name}")
        await connection.execute_script(script)
        await connection.execute(
            "INSERT INTO schema_migrations (version, name) VALUES (?, ?)",
            (version, name),
        )
        count += 1

    if count:
        logger.info(f"Applied {count} migration(s) to {connection.db_path}")
    return count
