"""
Local Object Store Engine

DESIGN DECISION: The cost manager needs a versioned, transactional,
asynchronous object store: named databases, named object stores keyed
by an auto-incrementing id, scoped read-only / read-write transactions
and forward cursors. We build that on SQLite through aiosqlite because:
1. One file per database, nothing to install or run
2. Real transactions (rollback leaves the file untouched)
3. The schema version fits in the `user_version` header
4. aiosqlite keeps the event loop free while SQLite works

LAYOUT:
- `user_version` holds the database version (0 = never opened)
- `__object_stores__` records each store's key path and key generator
- each store is a table `os_<name>(key, value)` where value is the
  record as JSON, minus its key field

The engine knows nothing about cost items. The connection, transaction,
record and scanner modules build the cost manager's semantics on top.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Optional

import aiosqlite
import structlog

from cost_manager.config import IN_MEMORY


logger = structlog.get_logger(__name__)

METADATA_TABLE = "__object_stores__"

Key = Any
UpgradeCallback = Callable[["UpgradeTransaction"], Awaitable[None]]


class TransactionMode(str, Enum):
    """Access mode of an engine transaction."""
    READ_ONLY = "readonly"
    READ_WRITE = "readwrite"


# =============================================================================
# ENGINE ERRORS
# =============================================================================

class EngineError(Exception):
    """Base exception for engine requests."""
    pass


class VersionError(EngineError):
    """Requested version is lower than the stored version."""
    pass


class ConstraintError(EngineError):
    """A key or uniqueness constraint was violated."""
    pass


class DataError(EngineError):
    """A value or key cannot be stored."""
    pass


class ReadOnlyError(EngineError):
    """Write attempted inside a read-only transaction."""
    pass


class UnknownObjectStoreError(EngineError):
    """Object store is not part of the database or the transaction scope."""
    pass


class TransactionInactiveError(EngineError):
    """Request issued against a finished transaction or a closed database."""
    pass


# =============================================================================
# SCHEMA
# =============================================================================

@dataclass(frozen=True)
class ObjectStoreSchema:
    """Key configuration of one object store."""
    name: str
    key_path: str
    auto_increment: bool

    @property
    def table(self) -> str:
        return _quote(f"os_{self.name}")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _encode(value: Mapping[str, Any]) -> str:
    try:
        return json.dumps(dict(value), separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise DataError(f"Value cannot be stored as JSON: {e}") from e


async def _table_exists(conn: aiosqlite.Connection, table: str) -> bool:
    async with conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ) as cursor:
        return await cursor.fetchone() is not None


async def _load_schemas(conn: aiosqlite.Connection) -> dict[str, ObjectStoreSchema]:
    if not await _table_exists(conn, METADATA_TABLE):
        return {}
    async with conn.execute(
        f"SELECT name, key_path, auto_increment FROM {_quote(METADATA_TABLE)} ORDER BY rowid"
    ) as cursor:
        rows = await cursor.fetchall()
    return {
        name: ObjectStoreSchema(name, key_path, bool(auto_increment))
        for name, key_path, auto_increment in rows
    }


# =============================================================================
# UPGRADE
# =============================================================================

class UpgradeTransaction:
    """
    Handed to the upgrade callback while a version change is in progress.

    Everything done here commits together with the new version number,
    or not at all.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        schemas: dict[str, ObjectStoreSchema],
        old_version: int,
        new_version: int,
    ):
        self._conn = conn
        self._schemas = schemas
        self.old_version = old_version
        self.new_version = new_version

    @property
    def object_store_names(self) -> frozenset[str]:
        return frozenset(self._schemas)

    async def create_object_store(
        self,
        name: str,
        key_path: str = "id",
        auto_increment: bool = True,
    ) -> ObjectStoreSchema:
        """Create a new object store. Fails if the name is taken."""
        if name in self._schemas:
            raise ConstraintError(f"Object store already exists: {name}")

        schema = ObjectStoreSchema(name, key_path, auto_increment)
        if auto_increment:
            key_column = "key INTEGER PRIMARY KEY AUTOINCREMENT"
        else:
            key_column = "key PRIMARY KEY NOT NULL"
        await self._conn.execute(
            f"CREATE TABLE {schema.table} ({key_column}, value TEXT NOT NULL)"
        )
        await self._conn.execute(
            f"INSERT INTO {_quote(METADATA_TABLE)} (name, key_path, auto_increment) "
            "VALUES (?, ?, ?)",
            (name, key_path, int(auto_increment)),
        )
        self._schemas[name] = schema
        return schema


# =============================================================================
# TRANSACTIONS AND OBJECT STORES
# =============================================================================

class Transaction:
    """A scoped unit of work. Obtain one from Database.transaction()."""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        schemas: Mapping[str, ObjectStoreSchema],
        mode: TransactionMode,
    ):
        self._conn = conn
        self._schemas = schemas
        self.mode = mode
        self._active = True

    @property
    def store_names(self) -> tuple[str, ...]:
        return tuple(self._schemas)

    @property
    def active(self) -> bool:
        return self._active

    def object_store(self, name: str) -> "ObjectStore":
        if name not in self._schemas:
            raise UnknownObjectStoreError(
                f"Object store not in transaction scope: {name}"
            )
        return ObjectStore(self, self._schemas[name])

    def _check_active(self) -> aiosqlite.Connection:
        if not self._active:
            raise TransactionInactiveError("Transaction has already finished")
        return self._conn

    def _check_writable(self) -> aiosqlite.Connection:
        conn = self._check_active()
        if self.mode is not TransactionMode.READ_WRITE:
            raise ReadOnlyError("Write request in a read-only transaction")
        return conn

    def _finish(self) -> None:
        self._active = False


class ObjectStore:
    """Request surface of one object store inside one transaction."""

    def __init__(self, transaction: Transaction, schema: ObjectStoreSchema):
        self._transaction = transaction
        self._schema = schema

    @property
    def name(self) -> str:
        return self._schema.name

    @property
    def key_path(self) -> str:
        return self._schema.key_path

    @property
    def auto_increment(self) -> bool:
        return self._schema.auto_increment

    def _decode(self, key: Key, value: str) -> dict[str, Any]:
        record = json.loads(value)
        record[self._schema.key_path] = key
        return record

    def _split(self, value: Mapping[str, Any]) -> tuple[Optional[Key], dict[str, Any]]:
        """Separate the key from the rest of the record."""
        record = dict(value)
        key = record.pop(self._schema.key_path, None)
        if key is not None and not isinstance(key, (int, str, float)):
            raise DataError(f"Invalid key type: {type(key).__name__}")
        return key, record

    async def add(self, value: Mapping[str, Any]) -> Key:
        """Insert a new record. Fails if the key is already used."""
        conn = self._transaction._check_writable()
        key, record = self._split(value)
        body = _encode(record)

        if key is None:
            if not self._schema.auto_increment:
                raise DataError(
                    f"Record has no '{self._schema.key_path}' and store "
                    f"'{self.name}' has no key generator"
                )
            sql, params = f"INSERT INTO {self._schema.table} (value) VALUES (?)", (body,)
        else:
            sql = f"INSERT INTO {self._schema.table} (key, value) VALUES (?, ?)"
            params = (key, body)

        try:
            cursor = await conn.execute(sql, params)
        except aiosqlite.IntegrityError as e:
            raise ConstraintError(f"Key already exists in '{self.name}': {key}") from e
        return key if key is not None else cursor.lastrowid

    async def put(self, value: Mapping[str, Any]) -> Key:
        """Insert or replace a record by its key."""
        conn = self._transaction._check_writable()
        key, record = self._split(value)
        if key is None:
            return await self.add(record)

        try:
            await conn.execute(
                f"INSERT INTO {self._schema.table} (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, _encode(record)),
            )
        except aiosqlite.IntegrityError as e:
            raise ConstraintError(f"Cannot store key {key!r} in '{self.name}'") from e
        return key

    async def get(self, key: Key) -> Optional[dict[str, Any]]:
        conn = self._transaction._check_active()
        async with conn.execute(
            f"SELECT key, value FROM {self._schema.table} WHERE key = ?",
            (key,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._decode(*row) if row else None

    async def get_all(self) -> list[dict[str, Any]]:
        conn = self._transaction._check_active()
        async with conn.execute(
            f"SELECT key, value FROM {self._schema.table} ORDER BY key"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._decode(key, value) for key, value in rows]

    async def delete(self, key: Key) -> None:
        """Remove a record. A missing key is not an error."""
        conn = self._transaction._check_writable()
        await conn.execute(
            f"DELETE FROM {self._schema.table} WHERE key = ?",
            (key,),
        )

    async def open_cursor(self) -> AsyncIterator[dict[str, Any]]:
        """Visit every record in key order, one cursor step at a time."""
        conn = self._transaction._check_active()
        async with conn.execute(
            f"SELECT key, value FROM {self._schema.table} ORDER BY key"
        ) as cursor:
            async for key, value in cursor:
                yield self._decode(key, value)


# =============================================================================
# DATABASE
# =============================================================================

class Database:
    """
    An opened, versioned database.

    All transactions share one SQLite connection. The lock runs them
    one at a time, so overlapping read-write work never interleaves.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        name: str,
        version: int,
        schemas: dict[str, ObjectStoreSchema],
    ):
        self._conn = conn
        self.name = name
        self.version = version
        self._schemas = schemas
        self._lock = asyncio.Lock()
        # Task currently inside a transaction; the lock is not re-entrant
        self._owner: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def object_store_names(self) -> frozenset[str]:
        return frozenset(self._schemas)

    @property
    def closed(self) -> bool:
        return self._closed

    def schema(self, name: str) -> ObjectStoreSchema:
        try:
            return self._schemas[name]
        except KeyError:
            raise UnknownObjectStoreError(f"No such object store: {name}") from None

    @classmethod
    async def open(
        cls,
        name: str,
        version: int,
        location: str,
        upgrade: Optional[UpgradeCallback] = None,
        timeout: float = 5.0,
    ) -> "Database":
        """
        Open `name` at `version`, running `upgrade` if the stored
        version is lower.

        The version check and the upgrade happen inside one write
        transaction, so a failing upgrade leaves the old version intact.
        `timeout` is how long a request waits on another connection's
        lock before failing with "database is locked".
        """
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise ValueError(f"Version must be a positive integer, got {version!r}")

        if location != IN_MEMORY:
            Path(location).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(location, timeout=timeout, isolation_level=None)
        try:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                async with conn.execute("PRAGMA user_version") as cursor:
                    (stored_version,) = await cursor.fetchone()

                if version < stored_version:
                    raise VersionError(
                        f"Requested version {version} is less than "
                        f"stored version {stored_version}"
                    )

                schemas = await _load_schemas(conn)
                if version > stored_version:
                    await conn.execute(
                        f"CREATE TABLE IF NOT EXISTS {_quote(METADATA_TABLE)} ("
                        "name TEXT PRIMARY KEY, key_path TEXT NOT NULL, "
                        "auto_increment INTEGER NOT NULL)"
                    )
                    upgrade_tx = UpgradeTransaction(conn, schemas, stored_version, version)
                    if upgrade is not None:
                        await upgrade(upgrade_tx)
                    # PRAGMA takes no parameters; version is a validated int
                    await conn.execute(f"PRAGMA user_version = {int(version)}")
                    logger.debug(
                        "database_upgraded",
                        database=name,
                        old_version=stored_version,
                        new_version=version,
                    )

                await conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                raise
        except BaseException:
            await conn.close()
            raise

        logger.debug(
            "database_opened",
            database=name,
            version=version,
            object_stores=sorted(schemas),
        )
        return cls(conn, name, version, schemas)

    @asynccontextmanager
    async def transaction(
        self,
        store_names: Iterable[str],
        mode: TransactionMode = TransactionMode.READ_ONLY,
    ) -> AsyncIterator[Transaction]:
        """
        Run a transaction over `store_names`.

        Commits when the block exits normally, rolls back when it raises
        or when the commit itself fails, so the connection is always left
        outside any transaction.

        Transactions on one Database run one at a time. Opening a second
        transaction from the task already inside one raises EngineError
        instead of waiting on itself.
        """
        if self._closed:
            raise TransactionInactiveError(f"Database is closed: {self.name}")
        if self._owner is not None and self._owner is asyncio.current_task():
            raise EngineError(
                f"Nested transaction on {self.name}: "
                "finish the open transaction before starting another"
            )

        names = list(dict.fromkeys(store_names))
        if not names:
            raise EngineError("Transaction scope must name at least one object store")
        scope = {store: self.schema(store) for store in names}
        mode = TransactionMode(mode)

        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                begin = "BEGIN IMMEDIATE" if mode is TransactionMode.READ_WRITE else "BEGIN DEFERRED"
                await self._conn.execute(begin)
                transaction = Transaction(self._conn, scope, mode)
                try:
                    yield transaction
                    transaction._finish()
                    await self._conn.execute("COMMIT")
                except BaseException:
                    transaction._finish()
                    if self._conn.in_transaction:
                        await self._conn.execute("ROLLBACK")
                    logger.debug(
                        "transaction_rolled_back",
                        database=self.name,
                        object_stores=names,
                        mode=mode.value,
                    )
                    raise
            finally:
                self._owner = None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        async with self._lock:
            await self._conn.close()
        logger.debug("database_closed", database=self.name)
