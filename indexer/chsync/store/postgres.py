"""
Read-only access to the indexer runtime's PostgreSQL state.

The runtime records, per chain, the block ranges it has fetched
(end_of_block_range_scanned_data) and the latest source block it has seen
(envio_chains). Both tables are created by the runtime on its first start,
so on a fresh deployment they may not exist yet.

Invariants:
    - Every call opens and closes its own connection
    - An undefined table reads as an empty mapping, never as an error
    - Nothing here writes to PostgreSQL

How to change safely:
    - Table names belong to the runtime; follow its migrations
    - Keep schema names composed with psycopg.sql.Identifier
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import psycopg
from psycopg import sql

from ..config import ProcessStoreConfig
from .base import StoreConnectionError, StoreQueryError

logger = logging.getLogger(__name__)

WATERMARK_TABLE = "end_of_block_range_scanned_data"
CHAINS_TABLE = "envio_chains"

_WATERMARK_QUERY = sql.SQL(
    "SELECT chain_id, MAX(block_number) AS max_block FROM {}.{} GROUP BY chain_id"
)
_CHAIN_HEADS_QUERY = sql.SQL(
    "SELECT id AS chain_id, source_block FROM {}.{} WHERE source_block IS NOT NULL"
)

Connector = Callable[..., Awaitable[Any]]


class PostgresProcessStore:
    """ProcessStore backed by the runtime's PostgreSQL schema.

    Example:
        >>> store = PostgresProcessStore(ProcessStoreConfig.from_env())
        >>> await store.get_watermarks()
        {1: 18000000, 8453: 9000000}
    """

    def __init__(
        self,
        config: ProcessStoreConfig,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: PostgreSQL connection configuration
            connector: Coroutine returning an async connection; defaults to
                psycopg.AsyncConnection.connect
        """
        self.config = config
        self._connector = connector or psycopg.AsyncConnection.connect

    async def get_watermarks(self) -> dict[int, int]:
        rows = await self._fetch(_WATERMARK_QUERY, WATERMARK_TABLE)
        return {int(chain_id): int(max_block) for chain_id, max_block in rows}

    async def get_chain_heads(self) -> dict[int, int]:
        rows = await self._fetch(_CHAIN_HEADS_QUERY, CHAINS_TABLE)
        return {int(chain_id): int(source_block) for chain_id, source_block in rows}

    async def close(self) -> None:
        # Connections are scoped to each call; nothing is held open.
        pass

    async def _fetch(self, query: sql.Composable, table: str) -> list[tuple[Any, ...]]:
        statement = query.format(sql.Identifier(self.config.schema), sql.Identifier(table))

        try:
            conn = await self._connector(**self.config.connect_kwargs())
        except psycopg.OperationalError as e:
            raise StoreConnectionError(f"Cannot connect to PostgreSQL: {e}") from e

        try:
            async with conn.cursor() as cur:
                await cur.execute(statement)
                return list(await cur.fetchall())
        except psycopg.errors.UndefinedTable:
            logger.info(
                "First run - runtime table not created yet",
                extra={"schema": self.config.schema, "table": table},
            )
            return []
        except psycopg.Error as e:
            raise StoreQueryError(f"PostgreSQL query on {table} failed: {e}") from e
        finally:
            await conn.close()
