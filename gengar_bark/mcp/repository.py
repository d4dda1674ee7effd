# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Persistence for MCP server configurations.

``PostgresConfigurationRepository`` stores configurations in the
``user_mcp_configurations`` table through an asyncpg pool.
``InMemoryConfigurationRepository`` has the same semantics and is used for
local development and tests. Both enforce one configuration per
``(user_id, lower(server_name))`` and scope every lookup to the owning user.
"""

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import asyncpg

from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.errors import DuplicateServerNameError, PersistenceError
from gengar_bark.mcp.models import StoredConfiguration, utcnow


logger = get_logger(__name__)

TABLE_NAME = "user_mcp_configurations"

UPDATABLE_COLUMNS = (
    "server_name",
    "transport_type",
    "url",
    "auth_token_ciphertext",
    "enabled",
    "capabilities",
    "verification_status",
    "verification_error",
)

SELECT_COLUMNS = """
    id, user_id, server_name, transport_type, url, auth_token_ciphertext,
    enabled, capabilities, verification_status, verification_error,
    created_at, updated_at
"""

# Server-side errors plus a dropped or unreachable connection
STORAGE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class ConfigurationRepository(ABC):
    """Storage interface used by the configuration service."""

    async def connect(self) -> None:
        """Open underlying resources."""

    async def disconnect(self) -> None:
        """Release underlying resources."""

    async def initialize_schema(self) -> None:
        """Create storage structures if they do not exist."""

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @abstractmethod
    async def insert(self, record: StoredConfiguration) -> StoredConfiguration:
        """Persist a new configuration. Raises DuplicateServerNameError."""

    @abstractmethod
    async def get(self, user_id: str, config_id: str) -> Optional[StoredConfiguration]:
        """Return the configuration if it exists and is owned by ``user_id``."""

    @abstractmethod
    async def find_by_name(self, user_id: str, server_name: str) -> Optional[StoredConfiguration]:
        """Case-insensitive lookup by server name."""

    @abstractmethod
    async def list_for_user(
        self, user_id: str, enabled_only: bool = False
    ) -> List[StoredConfiguration]:
        """All of a user's configurations ordered by lower(server_name), id."""

    @abstractmethod
    async def update(
        self, user_id: str, config_id: str, fields: Dict[str, Any]
    ) -> Optional[StoredConfiguration]:
        """Apply column updates; returns None if absent or not owned."""

    @abstractmethod
    async def delete(self, user_id: str, config_id: str) -> bool:
        """Hard delete; returns False if absent or not owned."""


def _sort_key(record: StoredConfiguration):
    return (record.server_name.lower(), record.id)


class InMemoryConfigurationRepository(ConfigurationRepository):
    """
    Dictionary-backed repository.

    Records are copied on the way in and out so callers cannot mutate
    stored state.
    """

    def __init__(self):
        self._records: Dict[str, StoredConfiguration] = {}
        logger.info("Initialized InMemoryConfigurationRepository")

    def _name_taken(self, user_id: str, server_name: str, exclude_id: Optional[str] = None) -> bool:
        wanted = server_name.lower()
        return any(
            r.user_id == user_id and r.server_name.lower() == wanted and r.id != exclude_id
            for r in self._records.values()
        )

    async def insert(self, record: StoredConfiguration) -> StoredConfiguration:
        if self._name_taken(record.user_id, record.server_name):
            raise DuplicateServerNameError(record.server_name)
        self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def get(self, user_id: str, config_id: str) -> Optional[StoredConfiguration]:
        record = self._records.get(config_id)
        if record is None or record.user_id != user_id:
            return None
        return record.model_copy(deep=True)

    async def find_by_name(self, user_id: str, server_name: str) -> Optional[StoredConfiguration]:
        wanted = server_name.strip().lower()
        for record in self._records.values():
            if record.user_id == user_id and record.server_name.lower() == wanted:
                return record.model_copy(deep=True)
        return None

    async def list_for_user(
        self, user_id: str, enabled_only: bool = False
    ) -> List[StoredConfiguration]:
        records = [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.user_id == user_id and (r.enabled or not enabled_only)
        ]
        return sorted(records, key=_sort_key)

    async def update(
        self, user_id: str, config_id: str, fields: Dict[str, Any]
    ) -> Optional[StoredConfiguration]:
        record = self._records.get(config_id)
        if record is None or record.user_id != user_id:
            return None

        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")

        if "server_name" in fields and self._name_taken(user_id, fields["server_name"], config_id):
            raise DuplicateServerNameError(fields["server_name"])

        updated = record.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
        self._records[config_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, user_id: str, config_id: str) -> bool:
        record = self._records.get(config_id)
        if record is None or record.user_id != user_id:
            return False
        del self._records[config_id]
        return True


def _parse_uuid(config_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(config_id))
    except (ValueError, AttributeError, TypeError):
        return None


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


class PostgresConfigurationRepository(ConfigurationRepository):
    """
    PostgreSQL storage for MCP server configurations.

    Database errors are raised as PersistenceError; unique-index violations
    on the server name are raised as DuplicateServerNameError.
    """

    def __init__(self, database_url: str):
        """
        Initialize the repository.

        Args:
            database_url: PostgreSQL connection URL
        """
        self.database_url = database_url
        self._pool: Optional[asyncpg.Pool] = None

        logger.info("Initialized PostgresConfigurationRepository")

    async def connect(self) -> None:
        """
        Create database connection pool.

        Raises:
            PersistenceError: If the pool cannot be created
        """
        if self._pool is None:
            logger.info("Creating database connection pool")
            try:
                self._pool = await asyncpg.create_pool(
                    self.database_url,
                    min_size=2,
                    max_size=10,
                    command_timeout=30,
                    init=_init_connection,
                )
            except STORAGE_ERRORS as e:
                logger.error("Failed to create database pool", extra={"error": str(e)})
                raise PersistenceError("connect to storage for", e) from e
            logger.info("Database connection pool created")

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None
            logger.info("Database connection pool closed")

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def initialize_schema(self) -> None:
        """
        Create the configuration table, indexes and updated_at trigger.

        Safe to run repeatedly.
        """
        pool = self._require_pool()

        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
            id UUID PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            server_name VARCHAR(255) NOT NULL,
            transport_type VARCHAR(32) NOT NULL
                CHECK (transport_type IN ('sse', 'websocket', 'streamablehttp')),
            url TEXT NOT NULL,
            auth_token_ciphertext TEXT,
            enabled BOOLEAN NOT NULL DEFAULT TRUE,
            capabilities JSONB,
            verification_status VARCHAR(16) NOT NULL DEFAULT 'unverified'
                CHECK (verification_status IN ('unverified', 'verified', 'failed')),
            verification_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_{TABLE_NAME}_user_server_name
        ON {TABLE_NAME} (user_id, LOWER(server_name));

        CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_user_id
        ON {TABLE_NAME} (user_id);

        CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_enabled
        ON {TABLE_NAME} (enabled);

        CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_server_name
        ON {TABLE_NAME} (server_name);

        CREATE OR REPLACE FUNCTION {TABLE_NAME}_touch_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;

        DROP TRIGGER IF EXISTS trg_{TABLE_NAME}_updated_at ON {TABLE_NAME};

        CREATE TRIGGER trg_{TABLE_NAME}_updated_at
        BEFORE UPDATE ON {TABLE_NAME}
        FOR EACH ROW EXECUTE FUNCTION {TABLE_NAME}_touch_updated_at();
        """

        logger.info("Initializing database schema")
        try:
            async with pool.acquire() as conn:
                await conn.execute(schema_sql)
        except STORAGE_ERRORS as e:
            raise PersistenceError("initialize storage for", e) from e
        logger.info("Database schema initialized successfully")

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> StoredConfiguration:
        return StoredConfiguration(
            id=str(row["id"]),
            user_id=row["user_id"],
            server_name=row["server_name"],
            transport_type=row["transport_type"],
            url=row["url"],
            auth_token_ciphertext=row["auth_token_ciphertext"],
            enabled=row["enabled"],
            capabilities=row["capabilities"],
            verification_status=row["verification_status"],
            verification_error=row["verification_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def insert(self, record: StoredConfiguration) -> StoredConfiguration:
        pool = self._require_pool()

        insert_sql = f"""
        INSERT INTO {TABLE_NAME} (
            id, user_id, server_name, transport_type, url, auth_token_ciphertext,
            enabled, capabilities, verification_status, verification_error,
            created_at, updated_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, NOW(), NOW())
        RETURNING {SELECT_COLUMNS}
        """

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    insert_sql,
                    uuid.UUID(record.id),
                    record.user_id,
                    record.server_name,
                    record.transport_type.value,
                    record.url,
                    record.auth_token_ciphertext,
                    record.enabled,
                    record.capabilities,
                    record.verification_status.value,
                    record.verification_error,
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateServerNameError(record.server_name) from e
        except STORAGE_ERRORS as e:
            logger.error(
                "Failed to insert MCP configuration",
                extra={"user_id": record.user_id, "error": str(e)},
            )
            raise PersistenceError("create", e) from e

        return self._row_to_record(row)

    async def get(self, user_id: str, config_id: str) -> Optional[StoredConfiguration]:
        pool = self._require_pool()
        parsed_id = _parse_uuid(config_id)
        if parsed_id is None:
            return None

        select_sql = f"""
        SELECT {SELECT_COLUMNS}
        FROM {TABLE_NAME}
        WHERE id = $1 AND user_id = $2
        """

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(select_sql, parsed_id, user_id)
        except STORAGE_ERRORS as e:
            raise PersistenceError("read", e) from e

        return self._row_to_record(row) if row else None

    async def find_by_name(self, user_id: str, server_name: str) -> Optional[StoredConfiguration]:
        pool = self._require_pool()

        select_sql = f"""
        SELECT {SELECT_COLUMNS}
        FROM {TABLE_NAME}
        WHERE user_id = $1 AND LOWER(server_name) = LOWER($2)
        """

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(select_sql, user_id, server_name.strip())
        except STORAGE_ERRORS as e:
            raise PersistenceError("read", e) from e

        return self._row_to_record(row) if row else None

    async def list_for_user(
        self, user_id: str, enabled_only: bool = False
    ) -> List[StoredConfiguration]:
        pool = self._require_pool()

        select_sql = f"""
        SELECT {SELECT_COLUMNS}
        FROM {TABLE_NAME}
        WHERE user_id = $1 AND ($2::boolean IS FALSE OR enabled = TRUE)
        ORDER BY LOWER(server_name), id
        """

        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(select_sql, user_id, enabled_only)
        except STORAGE_ERRORS as e:
            raise PersistenceError("list", e) from e

        return [self._row_to_record(row) for row in rows]

    async def update(
        self, user_id: str, config_id: str, fields: Dict[str, Any]
    ) -> Optional[StoredConfiguration]:
        pool = self._require_pool()
        parsed_id = _parse_uuid(config_id)
        if parsed_id is None:
            return None

        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")

        columns = [c for c in UPDATABLE_COLUMNS if c in fields]
        values = [
            getattr(fields[c], "value", fields[c]) for c in columns
        ]
        # Always touch the row so the trigger bumps updated_at
        assignments = ", ".join(f"{c} = ${i + 3}" for i, c in enumerate(columns)) or "enabled = enabled"

        update_sql = f"""
        UPDATE {TABLE_NAME}
        SET {assignments}
        WHERE id = $1 AND user_id = $2
        RETURNING {SELECT_COLUMNS}
        """

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(update_sql, parsed_id, user_id, *values)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateServerNameError(fields.get("server_name", "")) from e
        except STORAGE_ERRORS as e:
            logger.error(
                "Failed to update MCP configuration",
                extra={"user_id": user_id, "configuration_id": config_id, "error": str(e)},
            )
            raise PersistenceError("update", e) from e

        return self._row_to_record(row) if row else None

    async def delete(self, user_id: str, config_id: str) -> bool:
        pool = self._require_pool()
        parsed_id = _parse_uuid(config_id)
        if parsed_id is None:
            return False

        delete_sql = f"DELETE FROM {TABLE_NAME} WHERE id = $1 AND user_id = $2"

        try:
            async with pool.acquire() as conn:
                result = await conn.execute(delete_sql, parsed_id, user_id)
        except STORAGE_ERRORS as e:
            raise PersistenceError("delete", e) from e

        # asyncpg returns the command tag, e.g. "DELETE 1"
        return result.split()[-1] != "0"
