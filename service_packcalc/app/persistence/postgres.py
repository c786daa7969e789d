"""
PostgreSQL persistence layer for Pack Calculator Service.
"""

import asyncio
import json
from typing import Dict, Any, Optional, List

import asyncpg

from shared.errors import PersistenceError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..algorithm import Decomposition
from ..models import DEFAULT_PACK_SIZES, HistoryEntry

DEFAULT_HISTORY_LIMIT = 10

DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError, OSError)


class PackCalcPersistence:
    """PostgreSQL store for pack sizes and calculation history."""

    def __init__(self, dsn: str, command_timeout: float = 5.0):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.logger = get_logger("packcalc.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool and create the schema."""
        try:
            self.pool = await self._create_pool()
            await self._create_tables()
        except (RetryError,) + DB_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise PersistenceError("Failed to start persistence", details={"error": str(e)})

        self.logger.info("PostgreSQL persistence started")

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    @retry_on_exception(DB_ERRORS, RetryConfig(max_attempts=3, base_delay=0.5))
    async def _create_pool(self) -> asyncpg.Pool:
        return await asyncpg.create_pool(
            self.dsn,
            min_size=1,
            max_size=10,
            command_timeout=self.command_timeout
        )

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS pack_sizes (
                    size INTEGER PRIMARY KEY CHECK (size > 0),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS calculations (
                    id SERIAL PRIMARY KEY,
                    items INTEGER NOT NULL,
                    pack_sizes JSONB NOT NULL,
                    result JSONB NOT NULL,
                    total_items INTEGER NOT NULL,
                    total_packs INTEGER NOT NULL,
                    waste INTEGER NOT NULL,
                    timestamp TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_calculations_timestamp ON calculations(timestamp DESC);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise PersistenceError("Persistence not started")
        return self.pool

    async def ping(self) -> bool:
        """Check that the database answers."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    async def get_pack_sizes(self) -> List[int]:
        """Configured pack sizes, ascending; defaults when none are stored."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch("SELECT size FROM pack_sizes ORDER BY size")
        except DB_ERRORS as e:
            raise PersistenceError("Failed to get pack sizes", details={"error": str(e)})

        sizes = [row["size"] for row in rows]
        return sizes or list(DEFAULT_PACK_SIZES)

    async def set_pack_sizes(self, sizes: List[int]) -> None:
        """Replace the configured pack sizes."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("DELETE FROM pack_sizes")
                    await conn.executemany(
                        "INSERT INTO pack_sizes (size) VALUES ($1)",
                        [(size,) for size in sorted(set(sizes))]
                    )
        except DB_ERRORS as e:
            raise PersistenceError("Failed to update pack sizes", details={"error": str(e)})

        self.logger.info("Pack sizes updated", pack_sizes=sorted(set(sizes)))

    async def save_calculation(self, order_quantity: int, pack_sizes: List[int],
                               decomposition: Decomposition) -> None:
        """Append a computed decomposition to the history."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO calculations (items, pack_sizes, result, total_items, total_packs, waste)
                    VALUES ($1, $2::jsonb, $3::jsonb, $4, $5, $6)
                """,
                    order_quantity,
                    json.dumps(list(pack_sizes)),
                    json.dumps({str(size): count for size, count in decomposition.pack_counts.items()}),
                    decomposition.total_items,
                    decomposition.total_packs,
                    decomposition.waste
                )
        except DB_ERRORS as e:
            raise PersistenceError("Failed to save calculation", details={"error": str(e)})

    async def get_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        """Most recent calculations first."""
        if limit <= 0:
            limit = DEFAULT_HISTORY_LIMIT

        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT id, items, pack_sizes, result, total_items, total_packs, waste, timestamp
                    FROM calculations
                    ORDER BY timestamp DESC, id DESC
                    LIMIT $1
                """, limit)
        except DB_ERRORS as e:
            raise PersistenceError("Failed to get history", details={"error": str(e)})

        history = []
        for row in rows:
            try:
                history.append(self._row_to_entry(row))
            except (ValueError, TypeError) as e:
                self.logger.warning("Skipping unreadable history row", id=row["id"], error=str(e))
        return history

    async def clear_history(self) -> None:
        """Delete all stored calculations."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("DELETE FROM calculations")
        except DB_ERRORS as e:
            raise PersistenceError("Failed to clear history", details={"error": str(e)})

        self.logger.info("History cleared")

    async def get_stats(self) -> Dict[str, Any]:
        """Counts of stored calculations and pack sizes."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                total = await conn.fetchval("SELECT COUNT(*) FROM calculations")
                sizes = await conn.fetchval("SELECT COUNT(*) FROM pack_sizes")
                latest = await conn.fetchval("SELECT MAX(timestamp) FROM calculations")
        except DB_ERRORS as e:
            raise PersistenceError("Failed to get stats", details={"error": str(e)})

        stats: Dict[str, Any] = {
            "total_calculations": total,
            "pack_sizes_count": sizes,
        }
        if latest is not None:
            stats["latest_calculation"] = latest.isoformat()
        return stats

    def _row_to_entry(self, row) -> HistoryEntry:
        pack_sizes = row["pack_sizes"]
        result = row["result"]
        # asyncpg returns JSONB as text unless a codec is registered
        if isinstance(pack_sizes, str):
            pack_sizes = json.loads(pack_sizes)
        if isinstance(result, str):
            result = json.loads(result)

        return HistoryEntry(
            id=row["id"],
            items=row["items"],
            pack_sizes=[int(size) for size in pack_sizes],
            result={int(size): int(count) for size, count in result.items()},
            total_items=row["total_items"],
            total_packs=row["total_packs"],
            waste=row["waste"],
            timestamp=row["timestamp"]
        )
