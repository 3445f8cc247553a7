"""
SQLite implementation of data repositories using aiosqlite.

This module provides SQLite support with connection pooling and async
database operations. OAuth tokens are encrypted before they are written.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import aiosqlite

from .base import (
    AccountRepository,
    LocationRepository,
    ProviderRecordRepository,
    PublishableRepository,
    ActionLogRepository,
    DatabaseConnection,
)
from ..auth.crypto import TokenCipher
from ..exceptions import ConfigurationError
from ..models.account import Account
from ..models.action_log import ActionLogEntry
from ..models.base import format_datetime, parse_datetime, utcnow
from ..models.location import Location
from ..models.publishable import EntityKind, PublishableEntity, PublishStatus
from ..models.sync import ProviderRecord

logger = logging.getLogger(__name__)

UPSERT_CHUNK_SIZE = 100


def chunks(items: List[Any], size: int = UPSERT_CHUNK_SIZE) -> Iterable[List[Any]]:
    """Split a list into consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SQLiteConnection(DatabaseConnection):
    """SQLite database connection with connection pooling."""

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._connections: List[aiosqlite.Connection] = []
        self._available: asyncio.Queue = asyncio.Queue(maxsize=pool_size)
        self._lock = asyncio.Lock()
        self._initialized = False

    async def connect(self) -> None:
        """Establish database connection pool."""
        async with self._lock:
            if self._initialized:
                return

            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            for _ in range(self.pool_size):
                conn = await aiosqlite.connect(self.db_path)
                conn.row_factory = aiosqlite.Row
                # WAL lets readers proceed while a sync is writing
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA busy_timeout=5000")
                self._connections.append(conn)
                await self._available.put(conn)

            self._initialized = True

    async def disconnect(self) -> None:
        """Close all database connections."""
        async with self._lock:
            if not self._initialized:
                return

            for conn in self._connections:
                await conn.close()

            self._connections.clear()
            self._available = asyncio.Queue(maxsize=self.pool_size)
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self):
        """Get a connection from the pool."""
        if not self._initialized:
            await self.connect()

        conn = await self._available.get()
        try:
            yield conn
        finally:
            await self._available.put(conn)

    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        """Execute a database query."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            await conn.commit()
            return cursor

    async def execute_many(self, query: str, params: List[tuple]) -> None:
        """Execute a query for many parameter sets in one commit."""
        if not params:
            return
        async with self._get_connection() as conn:
            await conn.executemany(query, params)
            await conn.commit()

    async def execute_script(self, script: str) -> None:
        """Execute a multi-statement SQL script."""
        async with self._get_connection() as conn:
            await conn.executescript(script)
            await conn.commit()

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


class SQLiteAccountRepository(AccountRepository):
    """SQLite implementation of the credential store."""

    def __init__(self, connection: SQLiteConnection, cipher: TokenCipher):
        self.connection = connection
        self.cipher = cipher

    def _row_to_account(self, row: Dict[str, Any]) -> Account:
        row = dict(row)
        try:
            row["access_token"] = self.cipher.decrypt(row.get("access_token"))
            row["refresh_token"] = self.cipher.decrypt(row.get("refresh_token"))
        except ConfigurationError as e:
            # Unreadable credentials only cost this account a reconnect
            logger.error(f"Cannot decrypt tokens of account {row.get('id')}: {e}")
            row["access_token"] = None
            row["refresh_token"] = None
            row["token_expires_at"] = None
        settings = json.loads(row.get("settings") or "{}")
        return Account.from_row(row, settings)

    async def save_account(self, account: Account) -> str:
        query = """
        INSERT OR REPLACE INTO accounts (
            id, user_id, account_name, account_resource, is_active,
            access_token, refresh_token, token_expires_at, settings,
            last_sync, disconnected_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            account.id,
            account.user_id,
            account.account_name,
            account.account_resource,
            1 if account.is_active else 0,
            self.cipher.encrypt(account.access_token),
            self.cipher.encrypt(account.refresh_token),
            format_datetime(account.token_expires_at),
            json.dumps(account.settings.to_dict()),
            format_datetime(account.last_sync),
            format_datetime(account.disconnected_at),
            format_datetime(account.created_at),
            format_datetime(account.updated_at),
        )
        await self.connection.execute(query, params)
        return account.id

    async def get_account(self, account_id: str) -> Optional[Account]:
        row = await self.connection.fetch_one(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        )
        return self._row_to_account(row) if row else None

    async def get_account_for_user(self, account_id: str, user_id: str) -> Optional[Account]:
        row = await self.connection.fetch_one(
            "SELECT * FROM accounts WHERE id = ? AND user_id = ?", (account_id, user_id)
        )
        return self._row_to_account(row) if row else None

    async def find_account_by_resource(self, user_id: str, account_resource: str) -> Optional[Account]:
        row = await self.connection.fetch_one(
            "SELECT * FROM accounts WHERE user_id = ? AND account_resource = ?",
            (user_id, account_resource),
        )
        return self._row_to_account(row) if row else None

    async def list_active_accounts(self) -> List[Account]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM accounts WHERE is_active = 1 ORDER BY created_at"
        )
        return [self._row_to_account(row) for row in rows]

    async def list_accounts_for_user(self, user_id: str) -> List[Account]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at", (user_id,)
        )
        return [self._row_to_account(row) for row in rows]

    async def update_tokens(self,
                            account_id: str,
                            access_token: str,
                            token_expires_at: datetime,
                            refresh_token: Optional[str] = None) -> None:
        now = format_datetime(utcnow())
        if refresh_token:
            await self.connection.execute(
                """
                UPDATE accounts
                SET access_token = ?, token_expires_at = ?, refresh_token = ?, updated_at = ?
                WHERE id = ? AND is_active = 1
                """,
                (
                    self.cipher.encrypt(access_token),
                    format_datetime(token_expires_at),
                    self.cipher.encrypt(refresh_token),
                    now,
                    account_id,
                ),
            )
        else:
            await self.connection.execute(
                """
                UPDATE accounts
                SET access_token = ?, token_expires_at = ?, updated_at = ?
                WHERE id = ? AND is_active = 1
                """,
                (
                    self.cipher.encrypt(access_token),
                    format_datetime(token_expires_at),
                    now,
                    account_id,
                ),
            )

    async def update_last_sync(self, account_id: str, when: datetime) -> None:
        await self.connection.execute(
            "UPDATE accounts SET last_sync = ?, updated_at = ? WHERE id = ?",
            (format_datetime(when), format_datetime(utcnow()), account_id),
        )

    async def update_account_resource(self, account_id: str, account_resource: str) -> None:
        await self.connection.execute(
            "UPDATE accounts SET account_resource = ?, updated_at = ? WHERE id = ?",
            (account_resource, format_datetime(utcnow()), account_id),
        )

    async def deactivate_account(self, account_id: str, when: datetime) -> bool:
        cursor = await self.connection.execute(
            """
            UPDATE accounts
            SET is_active = 0, disconnected_at = ?, access_token = NULL,
                refresh_token = NULL, token_expires_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (format_datetime(when), format_datetime(when), account_id),
        )
        return cursor.rowcount > 0


class SQLiteLocationRepository(LocationRepository):
    """SQLite implementation of the location repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def upsert_locations(self, locations: List[Location]) -> int:
        query = """
        INSERT INTO locations (
            id, account_id, user_id, resource_name, title, address, phone,
            category, website, is_active, metadata, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(account_id, resource_name) DO UPDATE SET
            title = excluded.title,
            address = excluded.address,
            phone = excluded.phone,
            category = excluded.category,
            website = excluded.website,
            is_active = excluded.is_active,
            metadata = excluded.metadata,
            updated_at = excluded.updated_at
        """
        for chunk in chunks(locations):
            await self.connection.execute_many(query, [
                (
                    loc.id,
                    loc.account_id,
                    loc.user_id,
                    loc.resource_name,
                    loc.title,
                    loc.address,
                    loc.phone,
                    loc.category,
                    loc.website,
                    1 if loc.is_active else 0,
                    json.dumps(loc.metadata),
                    format_datetime(loc.updated_at),
                )
                for loc in chunk
            ])
        return len(locations)

    def _row_to_location(self, row: Dict[str, Any]) -> Location:
        return Location(
            id=row["id"],
            account_id=row["account_id"],
            user_id=row.get("user_id") or "",
            resource_name=row["resource_name"],
            title=row.get("title") or "",
            address=row.get("address"),
            phone=row.get("phone"),
            category=row.get("category"),
            website=row.get("website"),
            is_active=bool(row.get("is_active", 1)),
            metadata=json.loads(row.get("metadata") or "{}"),
            updated_at=parse_datetime(row.get("updated_at")) or utcnow(),
        )

    async def list_locations(self, account_id: str) -> List[Location]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM locations WHERE account_id = ? AND is_active = 1 ORDER BY title",
            (account_id,),
        )
        return [self._row_to_location(row) for row in rows]

    async def get_location(self, location_id: str) -> Optional[Location]:
        row = await self.connection.fetch_one(
            "SELECT * FROM locations WHERE id = ?", (location_id,)
        )
        return self._row_to_location(row) if row else None


class SQLiteProviderRecordRepository(ProviderRecordRepository):
    """SQLite implementation of the provider record repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def upsert_records(self, records: List[ProviderRecord]) -> int:
        query = """
        INSERT INTO provider_records (
            entity_type, external_id, account_id, location_id, payload, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(entity_type, external_id) DO UPDATE SET
            account_id = excluded.account_id,
            location_id = excluded.location_id,
            payload = excluded.payload,
            updated_at = excluded.updated_at
        """
        for chunk in chunks(records):
            await self.connection.execute_many(query, [
                (
                    record.entity_type.value,
                    record.external_id,
                    record.account_id,
                    record.location_id,
                    json.dumps(record.payload),
                    format_datetime(record.updated_at),
                )
                for record in chunk
            ])
        return len(records)

    async def count_records(self,
                            account_id: str,
                            entity_type: Optional[str] = None) -> int:
        if entity_type:
            row = await self.connection.fetch_one(
                "SELECT COUNT(*) AS n FROM provider_records WHERE account_id = ? AND entity_type = ?",
                (account_id, entity_type),
            )
        else:
            row = await self.connection.fetch_one(
                "SELECT COUNT(*) AS n FROM provider_records WHERE account_id = ?",
                (account_id,),
            )
        return row["n"] if row else 0


class SQLitePublishableRepository(PublishableRepository):
    """SQLite implementation of the publishable entity repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_entity(self, entity: PublishableEntity) -> str:
        query = """
        INSERT OR REPLACE INTO publishable_entities (
            id, kind, user_id, location_id, target_resource, payload, status,
            provider_resource_id, error_code, error_message, provider_error,
            published_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            entity.id,
            entity.kind.value,
            entity.user_id,
            entity.location_id,
            entity.target_resource,
            json.dumps(entity.payload),
            entity.status.value,
            entity.provider_resource_id,
            entity.error_code,
            entity.error_message,
            entity.provider_error,
            format_datetime(entity.published_at),
            format_datetime(entity.created_at),
            format_datetime(entity.updated_at),
        )
        await self.connection.execute(query, params)
        return entity.id

    async def claim_for_publish(self,
                                entity_id: str,
                                now: datetime,
                                stale_before: datetime) -> bool:
        cursor = await self.connection.execute(
            """
            UPDATE publishable_entities
            SET status = 'pending', error_code = NULL, error_message = NULL,
                provider_error = NULL, updated_at = ?
            WHERE id = ?
              AND (status IN ('draft', 'failed')
                   OR (status = 'pending' AND updated_at <= ?))
            """,
            (format_datetime(now), entity_id, format_datetime(stale_before)),
        )
        return cursor.rowcount == 1

    async def get_entity(self, entity_id: str) -> Optional[PublishableEntity]:
        row = await self.connection.fetch_one(
            "SELECT * FROM publishable_entities WHERE id = ?", (entity_id,)
        )
        if not row:
            return None
        return PublishableEntity(
            id=row["id"],
            kind=EntityKind(row["kind"]),
            user_id=row.get("user_id") or "",
            location_id=row.get("location_id") or "",
            target_resource=row.get("target_resource"),
            payload=json.loads(row.get("payload") or "{}"),
            status=PublishStatus(row["status"]),
            provider_resource_id=row.get("provider_resource_id"),
            error_code=row.get("error_code"),
            error_message=row.get("error_message"),
            provider_error=row.get("provider_error"),
            published_at=parse_datetime(row.get("published_at")),
            created_at=parse_datetime(row.get("created_at")) or utcnow(),
            updated_at=parse_datetime(row.get("updated_at")) or utcnow(),
        )


class SQLiteActionLogRepository(ActionLogRepository):
    """SQLite implementation of the append-only action log."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def append(self, entry: ActionLogEntry) -> None:
        await self.connection.execute(
            """
            INSERT INTO action_log (id, action, status, details, user_id, account_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.action,
                entry.status,
                json.dumps(entry.details, default=str),
                entry.user_id,
                entry.account_id,
                format_datetime(entry.created_at),
            ),
        )

    async def list_entries(self,
                           limit: int = 100,
                           action: Optional[str] = None,
                           account_id: Optional[str] = None) -> List[ActionLogEntry]:
        conditions = []
        params: List[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if account_id:
            conditions.append("account_id = ?")
            params.append(account_id)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = await self.connection.fetch_all(
            f"SELECT * FROM action_log {where} ORDER BY created_at DESC LIMIT ?",
            tuple(params),
        )
        return [
            ActionLogEntry(
                id=row["id"],
                action=row["action"],
                status=row["status"],
                details=json.loads(row.get("details") or "{}"),
                user_id=row.get("user_id"),
                account_id=row.get("account_id"),
                created_at=parse_datetime(row["created_at"]),
            )
            for row in rows
        ]
