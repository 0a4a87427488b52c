"""
Persistence for tracking state.

Provides an async SQLite store (default) and a JSON document store.
Both load the whole state at run start and replace it in one write at
run end, so an interrupted run leaves the previous state untouched.
"""

import asyncio
import json
import logging
import os
import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

from rss_feed_manager.config import StorageBackend, StorageConfig
from rss_feed_manager.state import TrackingState, ensure_utc

logger = logging.getLogger(__name__)


class StateStoreError(Exception):
    """Raised when tracking state cannot be loaded or saved."""


@runtime_checkable
class StateStore(Protocol):
    """Interface shared by the state persistence backends."""

    async def initialize(self) -> None:
        """Prepare the backend (open connections, create schema)."""
        ...

    async def load_state(self) -> TrackingState:
        """Load the persisted state, empty if nothing was saved yet."""
        ...

    async def save_state(self, state: TrackingState) -> None:
        """Replace the persisted state with the given one."""
        ...

    async def close(self) -> None:
        """Release any resources."""
        ...


def _parse_timestamp(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))


class SQLiteStateStore:
    """
    Async SQLite store for feed watermarks.

    Stores one row per (channel, feed) pair.
    """

    def __init__(self, database_path: str | Path):
        """
        Initialize storage with database path.

        Parameters
        ----------
        database_path : str | Path
            Path to the SQLite database file.
        """
        self.database_path = Path(database_path)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """
        Initialize the database connection and create tables.

        Creates the database file and parent directories if they don't exist.

        Raises
        ------
        StateStoreError
            If the database cannot be opened.
        """
        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)

            logger.info("Initializing database at %s", self.database_path)

            self._connection = await aiosqlite.connect(self.database_path)
            await self._create_tables()
        except (OSError, sqlite3.Error) as e:
            raise StateStoreError(f"Cannot open database {self.database_path}: {e}") from e

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS watermarks (
                channel TEXT NOT NULL,
                feed_url TEXT NOT NULL,
                last_updated TEXT NOT NULL,
                saved_at TEXT NOT NULL,
                PRIMARY KEY (channel, feed_url)
            )
        """)

        await self._connection.commit()
        logger.debug("Database tables created/verified")

    async def load_state(self) -> TrackingState:
        """
        Load all watermarks.

        Returns
        -------
        TrackingState
            The persisted state, empty on a fresh database.

        Raises
        ------
        StateStoreError
            If the rows cannot be read or decoded.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        try:
            cursor = await self._connection.execute(
                "SELECT channel, feed_url, last_updated FROM watermarks"
            )
            rows = await cursor.fetchall()
            channels: dict[str, dict[str, datetime]] = {}
            for channel, feed_url, last_updated in rows:
                channels.setdefault(channel, {})[feed_url] = _parse_timestamp(last_updated)
        except (sqlite3.Error, ValueError) as e:
            raise StateStoreError(f"Cannot load state from {self.database_path}: {e}") from e

        logger.debug("Loaded %d watermark(s) from database", len(rows))
        return TrackingState(channels)

    async def save_state(self, state: TrackingState) -> None:
        """
        Replace all watermarks in a single transaction.

        Parameters
        ----------
        state : TrackingState
            State to persist.

        Raises
        ------
        StateStoreError
            If the transaction fails; it is rolled back.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (channel, feed_url, watermark.isoformat(), now)
            for channel, feed_url, watermark in state.items()
        ]

        try:
            await self._connection.execute("DELETE FROM watermarks")
            await self._connection.executemany(
                """
                INSERT INTO watermarks (channel, feed_url, last_updated, saved_at)
                VALUES (?, ?, ?, ?)
                """,
                rows,
            )
            await self._connection.commit()
        except sqlite3.Error as e:
            await self._connection.rollback()
            raise StateStoreError(f"Cannot save state to {self.database_path}: {e}") from e

        logger.debug("Saved %d watermark(s) to database", len(rows))

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    async def __aenter__(self) -> "SQLiteStateStore":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


class JSONStateStore:
    """
    JSON document store for feed watermarks.

    The document maps channel -> feed URL -> ISO 8601 timestamp. Saving
    writes a temporary file next to the target and renames it over the
    previous document.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def initialize(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(f"Cannot create state directory: {e}") from e

    async def load_state(self) -> TrackingState:
        """
        Load the state document.

        A missing file is not an error and yields an empty state.

        Raises
        ------
        StateStoreError
            If the file exists but cannot be read or decoded.
        """
        if not self.path.exists():
            logger.info("No state file at %s, starting with empty state", self.path)
            return TrackingState()

        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            document = json.loads(raw) if raw.strip() else {}
            if not isinstance(document, dict):
                raise ValueError("state document must be a JSON object")
            channels = {
                channel: {url: _parse_timestamp(ts) for url, ts in feeds.items()}
                for channel, feeds in document.items()
            }
        except (OSError, ValueError, TypeError, AttributeError) as e:
            raise StateStoreError(f"Cannot load state from {self.path}: {e}") from e

        logger.debug("Loaded state from %s", self.path)
        return TrackingState(channels)

    async def save_state(self, state: TrackingState) -> None:
        """
        Atomically replace the state document.

        Raises
        ------
        StateStoreError
            If the document cannot be written.
        """
        document = {
            channel: {url: ts.isoformat() for url, ts in feeds.items()}
            for channel, feeds in state.to_dict().items()
        }
        content = json.dumps(document, indent=2, sort_keys=True)

        try:
            await asyncio.to_thread(self._write_atomic, content)
        except OSError as e:
            raise StateStoreError(f"Cannot save state to {self.path}: {e}") from e

        logger.debug("Saved %d watermark(s) to %s", len(state), self.path)

    def _write_atomic(self, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def close(self) -> None:
        pass


def create_store(config: StorageConfig) -> StateStore:
    """
    Build the state store selected in the configuration.

    Parameters
    ----------
    config : StorageConfig
        Storage settings.

    Returns
    -------
    StateStore
        An uninitialized store.
    """
    if config.backend is StorageBackend.JSON:
        return JSONStateStore(config.path)
    return SQLiteStateStore(config.path)
