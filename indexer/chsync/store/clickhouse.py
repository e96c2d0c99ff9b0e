"""
ClickHouse analytics store over the HTTP interface.

Queries are sent with httpx to ClickHouse's HTTP endpoint. Values are
always bound as server-side query parameters ({name:Type} placeholders
with param_<name> arguments); only table and database identifiers are
rendered into the SQL text, backtick-quoted.

Invariants:
    - One shared AsyncClient per store, pooled up to max_open_connections
    - Inserts use JSONEachRow; a rejected insert writes nothing to that table
    - Read paths never fail because no destination table exists yet

How to change safely:
    - Keep FORMAT JSONEachRow for reads; 64-bit integers arrive as strings
      and are converted with int()
    - Test query text changes against a real server before deployment
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from ..config import AnalyticsStoreConfig
from ..schema import EventTableSchema, quote_identifier
from .base import StoreConnectionError, StoreError, StoreQueryError

logger = logging.getLogger(__name__)


def quote_string(value: str) -> str:
    """Render a ClickHouse string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class ClickHouseStore:
    """AnalyticsStore backed by ClickHouse's HTTP interface.

    Attributes:
        config: Connection configuration
        database: Database holding the destination tables

    Example:
        >>> store = ClickHouseStore(AnalyticsStoreConfig.from_env())
        >>> await store.connect()
        >>> await store.insert("erc20_transfer", rows)
        >>> await store.close()
    """

    def __init__(
        self,
        config: AnalyticsStoreConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: ClickHouse connection configuration
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.database = config.database
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return

        headers = {"X-ClickHouse-User": self.config.username}
        if self.config.password:
            headers["X-ClickHouse-Key"] = self.config.password

        self._client = httpx.AsyncClient(
            base_url=self.config.url,
            headers=headers,
            timeout=self.config.request_timeout_ms / 1000,
            limits=httpx.Limits(max_connections=self.config.max_open_connections),
            transport=self._transport,
        )
        logger.info("Connected to ClickHouse", extra={"database": self.database})

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
        logger.info("ClickHouse connection closed")

    async def _execute(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        body: bytes | None = None,
    ) -> httpx.Response:
        """Run one statement and return the raw response.

        With a body, the statement travels in the URL and the body is the
        insert payload; otherwise the statement is the request body.
        """
        if self._client is None:
            raise StoreConnectionError("ClickHouse store is not connected")

        url_params: dict[str, Any] = {"database": self.database}
        if self.config.compression:
            url_params["enable_http_compression"] = 1
        for name, value in (params or {}).items():
            url_params[f"param_{name}"] = value

        if body is None:
            content = query.encode("utf-8")
        else:
            url_params["query"] = query
            content = body

        try:
            response = await self._client.post("/", params=url_params, content=content)
        except httpx.TransportError as e:
            raise StoreConnectionError(f"ClickHouse request failed: {e}") from e

        if response.status_code != 200:
            raise StoreQueryError(
                f"ClickHouse returned HTTP {response.status_code}: {response.text.strip()}"
            )
        return response

    async def _select(self, query: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        response = await self._execute(f"{query}\nFORMAT JSONEachRow", params)
        rows = []
        for line in response.text.splitlines():
            if line.strip():
                rows.append(json.loads(line))
        return rows

    def _qualified(self, table: str) -> str:
        return f"{quote_identifier(self.database)}.{quote_identifier(table)}"

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        if not rows:
            return
        try:
            payload = "\n".join(json.dumps(row, separators=(",", ":")) for row in rows)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Rows for {table} are not JSON serializable: {e}") from e
        await self._execute(
            f"INSERT INTO {self._qualified(table)} FORMAT JSONEachRow",
            body=payload.encode("utf-8"),
        )

    async def list_tables(self) -> list[str]:
        rows = await self._select(
            """
            SELECT name
            FROM system.tables
            WHERE database = {database:String}
              AND name NOT LIKE '.%'
              AND engine LIKE '%MergeTree%'
            ORDER BY name
            """,
            {"database": self.database},
        )
        return [row["name"] for row in rows]

    async def max_block_per_chain(self, tables: Sequence[str]) -> dict[int, int]:
        if not tables:
            return {}

        union = " UNION ALL ".join(
            f"SELECT chain_id, MAX(block_number) AS max_block "
            f"FROM {self._qualified(table)} GROUP BY chain_id"
            for table in tables
        )
        rows = await self._select(
            f"""
            WITH all_maxes AS ({union})
            SELECT chain_id, MAX(max_block) AS max_block
            FROM all_maxes
            GROUP BY chain_id
            """
        )
        return {int(row["chain_id"]): int(row["max_block"]) for row in rows}

    async def count_rows_after(
        self, tables: Sequence[str], chain_id: int, block_number: int
    ) -> dict[str, int]:
        if not tables:
            return {}

        query = " UNION ALL ".join(
            f"SELECT {quote_string(table)} AS table_name, COUNT(*) AS orphaned_count "
            f"FROM {self._qualified(table)} "
            f"WHERE chain_id = {{chain_id:UInt32}} AND block_number > {{safe_block:UInt64}}"
            for table in tables
        )
        rows = await self._select(query, {"chain_id": chain_id, "safe_block": block_number})
        return {row["table_name"]: int(row["orphaned_count"]) for row in rows}

    async def delete_rows_after(self, table: str, chain_id: int, block_number: int) -> None:
        await self._execute(
            f"DELETE FROM {self._qualified(table)} "
            f"WHERE chain_id = {{chain_id:UInt32}} AND block_number > {{safe_block:UInt64}}",
            {"chain_id": chain_id, "safe_block": block_number},
        )

    async def fetch_rows(
        self, table: str, chain_id: int | None = None, final: bool = True
    ) -> list[dict[str, Any]]:
        query = f"SELECT * FROM {self._qualified(table)}"
        if final:
            query += " FINAL"
        params: dict[str, Any] = {}
        if chain_id is not None:
            query += " WHERE chain_id = {chain_id:UInt32}"
            params["chain_id"] = chain_id
        query += " ORDER BY id"
        return await self._select(query, params)

    async def ensure_tables(self, schemas: Sequence[EventTableSchema]) -> None:
        await self._execute(f"CREATE DATABASE IF NOT EXISTS {quote_identifier(self.database)}")
        for schema in schemas:
            await self._execute(schema.create_table_sql(self.database))
        logger.info(
            "Destination tables ensured",
            extra={"database": self.database, "tables": len(schemas)},
        )
