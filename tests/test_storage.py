"""
Tests for the object store persistence layer.

Covers opening/upgrading databases, transaction scoping, the record
operations and the cursor scanner, against real SQLite files in tmp_path.
"""

import asyncio

import pytest

from cost_manager.config import get_settings
from cost_manager.queries import month_filter
from cost_manager.services.storage import (
    ConnectionError,
    NotFoundError,
    NotInitializedError,
    OperationError,
    TableDeclaration,
    TransactionMode,
    add,
    delete,
    get,
    get_all,
    open_database,
    scan,
    update,
    with_transaction,
)
from cost_manager.services.storage.engine import (
    ConstraintError,
    DataError,
    Database,
    ReadOnlyError,
    VersionError,
)

from tests.conftest import COST_TABLE, DB_NAME


class TestConnectionManager:
    """Tests for open_database and Connection."""

    @pytest.mark.asyncio
    async def test_open_creates_declared_tables(self, connection):
        """Test a fresh database gets its tables and version."""
        assert connection.name == DB_NAME
        assert connection.version == 1
        assert connection.is_open is True
        assert connection.table_names == frozenset({COST_TABLE})

    @pytest.mark.asyncio
    async def test_open_twice_is_idempotent(self, tmp_path, cost_tables):
        """Test reopening with the same version recreates nothing."""
        first = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        await add(first, COST_TABLE, {"amount": 1})
        second = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        try:
            assert second.table_names == first.table_names
            assert second.tables == first.tables
            assert len(await get_all(second, COST_TABLE)) == 1
        finally:
            await first.close()
            await second.close()

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path, cost_tables, lunch):
        """Test records persist across connections."""
        conn = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        await add(conn, COST_TABLE, lunch)
        await conn.close()

        conn = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        try:
            assert await get_all(conn, COST_TABLE) == [{**lunch, "id": 1}]
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_version_bump_adds_missing_tables_only(self, tmp_path, cost_tables, lunch):
        """Test an upgrade creates new tables and keeps existing data."""
        conn = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        await add(conn, COST_TABLE, lunch)
        await conn.close()

        tables = cost_tables + [TableDeclaration(name="budgets")]
        conn = await open_database(DB_NAME, 2, tables, data_dir=str(tmp_path))
        try:
            assert conn.version == 2
            assert conn.table_names == frozenset({COST_TABLE, "budgets"})
            assert await get_all(conn, COST_TABLE) == [{**lunch, "id": 1}]
            assert await get_all(conn, "budgets") == []
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_same_version_does_not_create_new_tables(self, tmp_path, cost_tables):
        """Test tables declared without a version bump are not created."""
        conn = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        await conn.close()

        tables = cost_tables + [TableDeclaration(name="budgets")]
        conn = await open_database(DB_NAME, 1, tables, data_dir=str(tmp_path))
        try:
            assert "budgets" not in conn.table_names
            with pytest.raises(OperationError):
                await add(conn, "budgets", {"limit": 100})
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_lower_version_fails(self, tmp_path, cost_tables):
        """Test opening below the stored version raises ConnectionError."""
        conn = await open_database(DB_NAME, 2, cost_tables, data_dir=str(tmp_path))
        await conn.close()

        with pytest.raises(ConnectionError) as exc_info:
            await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        assert isinstance(exc_info.value.__cause__, VersionError)

    @pytest.mark.asyncio
    async def test_failed_upgrade_keeps_old_version(self, tmp_path):
        """Test an upgrade callback error rolls the whole upgrade back."""
        location = str(tmp_path / "upgrade.sqlite3")

        async def create_then_fail(upgrade):
            await upgrade.create_object_store("costItems")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await Database.open("upgrade", 1, location, upgrade=create_then_fail)

        # Still version 0: opening at 1 runs the upgrade again
        calls = []

        async def record_versions(upgrade):
            calls.append((upgrade.old_version, upgrade.new_version))
            assert upgrade.object_store_names == frozenset()

        database = await Database.open("upgrade", 1, location, upgrade=record_versions)
        await database.close()
        assert calls == [(0, 1)]

    @pytest.mark.asyncio
    async def test_unusable_location_fails(self, tmp_path, cost_tables):
        """Test an I/O failure surfaces as ConnectionError."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")

        with pytest.raises(ConnectionError):
            await open_database(DB_NAME, 1, cost_tables, data_dir=str(blocker))

    @pytest.mark.asyncio
    async def test_in_memory_database(self, cost_tables, lunch):
        """Test ':memory:' opens a private database."""
        conn = await open_database(DB_NAME, 1, cost_tables, data_dir=":memory:")
        try:
            assert await add(conn, COST_TABLE, lunch) == 1
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_default_data_dir_comes_from_settings(self, tmp_path, cost_tables):
        """Test the configured data directory is used when none is given."""
        conn = await open_database(DB_NAME, 1, cost_tables)
        await conn.close()
        assert (tmp_path / f"{DB_NAME}.sqlite3").exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", [0, -1, True, 1.5])
    async def test_invalid_version_rejected(self, cost_tables, version):
        """Test malformed versions fail before touching the engine."""
        with pytest.raises(ValueError):
            await open_database(DB_NAME, version, cost_tables)

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, cost_tables):
        with pytest.raises(ValueError):
            await open_database("  ", 1, cost_tables)

    @pytest.mark.asyncio
    async def test_duplicate_declarations_rejected(self, cost_tables):
        with pytest.raises(ValueError, match="Duplicate"):
            await open_database(DB_NAME, 1, cost_tables + cost_tables)


class TestTransactionGateway:
    """Tests for with_transaction."""

    @pytest.mark.asyncio
    async def test_body_result_is_returned(self, connection, lunch):
        """Test a read-write body commits and returns its value."""
        async def body(scope):
            return await scope[COST_TABLE].add(lunch)

        assert await with_transaction(connection, [COST_TABLE], TransactionMode.READ_WRITE, body) == 1
        assert len(await get_all(connection, COST_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_failure_rolls_back_whole_transaction(self, connection, lunch):
        """Test earlier requests in a failed transaction are discarded."""
        async def body(scope):
            await scope[COST_TABLE].add(lunch)
            raise RuntimeError("disk on fire")

        with pytest.raises(OperationError) as exc_info:
            await with_transaction(connection, [COST_TABLE], TransactionMode.READ_WRITE, body)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert await get_all(connection, COST_TABLE) == []

    @pytest.mark.asyncio
    async def test_read_only_rejects_writes(self, connection, lunch):
        """Test writes inside a read-only transaction fail."""
        async def body(scope):
            await scope[COST_TABLE].add(lunch)

        with pytest.raises(OperationError) as exc_info:
            await with_transaction(connection, [COST_TABLE], TransactionMode.READ_ONLY, body)
        assert isinstance(exc_info.value.__cause__, ReadOnlyError)

    @pytest.mark.asyncio
    async def test_unknown_table(self, connection):
        async def body(scope):
            return None

        with pytest.raises(OperationError):
            await with_transaction(connection, ["nope"], TransactionMode.READ_ONLY, body)

    @pytest.mark.asyncio
    async def test_storage_errors_pass_through(self, connection):
        """Test NotFoundError raised in a body is not wrapped."""
        async def body(scope):
            raise NotFoundError("missing")

        with pytest.raises(NotFoundError):
            await with_transaction(connection, [COST_TABLE], TransactionMode.READ_WRITE, body)

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        async def body(scope):
            return None

        with pytest.raises(NotInitializedError):
            await with_transaction(None, [COST_TABLE], TransactionMode.READ_ONLY, body)

    @pytest.mark.asyncio
    async def test_requires_tables(self, connection):
        async def body(scope):
            return None

        with pytest.raises(ValueError):
            await with_transaction(connection, [], TransactionMode.READ_ONLY, body)

    @pytest.mark.asyncio
    async def test_closed_connection(self, tmp_path, cost_tables):
        """Test operations after close raise NotInitializedError."""
        conn = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        await conn.close()

        assert conn.is_open is False
        with pytest.raises(NotInitializedError):
            await get_all(conn, COST_TABLE)

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_connection_usable(
        self, tmp_path, cost_tables, lunch, monkeypatch
    ):
        """Test a commit blocked by another connection is rolled back cleanly."""
        monkeypatch.setenv("COST_MANAGER_STORAGE_BUSY_TIMEOUT", "0")
        get_settings.cache_clear()
        reader = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        writer = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
        try:
            async def hold_read_lock(scope):
                await scope[COST_TABLE].get_all()
                with pytest.raises(OperationError, match="locked"):
                    await add(writer, COST_TABLE, lunch)

            await with_transaction(
                reader, [COST_TABLE], TransactionMode.READ_ONLY, hold_read_lock
            )

            assert await add(writer, COST_TABLE, lunch) == 1
            assert await get_all(reader, COST_TABLE) == [{**lunch, "id": 1}]
        finally:
            await reader.close()
            await writer.close()

    @pytest.mark.asyncio
    async def test_nested_operation_fails_instead_of_waiting(self, connection, lunch):
        """Test a record operation on the same connection inside a body fails."""
        async def body(scope):
            await scope[COST_TABLE].add(lunch)
            await get(connection, COST_TABLE, 1)

        with pytest.raises(OperationError, match="Nested transaction"):
            await asyncio.wait_for(
                with_transaction(connection, [COST_TABLE], TransactionMode.READ_WRITE, body),
                timeout=5,
            )
        assert await get_all(connection, COST_TABLE) == []


class TestRecordOperations:
    """Tests for add / get / get_all / update / delete."""

    @pytest.mark.asyncio
    async def test_add_assigns_sequential_ids(self, connection, lunch, groceries):
        assert await add(connection, COST_TABLE, lunch) == 1
        assert await add(connection, COST_TABLE, groceries) == 2

    @pytest.mark.asyncio
    async def test_add_does_not_mutate_input(self, connection, lunch):
        original = dict(lunch)
        await add(connection, COST_TABLE, lunch)
        assert lunch == original

    @pytest.mark.asyncio
    async def test_get_all_returns_records_with_ids(self, connection, lunch, groceries):
        await add(connection, COST_TABLE, lunch)
        await add(connection, COST_TABLE, groceries)

        assert await get_all(connection, COST_TABLE) == [
            {**lunch, "id": 1},
            {**groceries, "id": 2},
        ]

    @pytest.mark.asyncio
    async def test_get_all_empty_table(self, connection):
        assert await get_all(connection, COST_TABLE) == []

    @pytest.mark.asyncio
    async def test_get(self, connection, lunch):
        await add(connection, COST_TABLE, lunch)
        assert await get(connection, COST_TABLE, 1) == {**lunch, "id": 1}
        assert await get(connection, COST_TABLE, 99) is None

    @pytest.mark.asyncio
    async def test_add_rejects_preset_identifier(self, connection, lunch):
        """Test the store, not the caller, assigns identifiers."""
        with pytest.raises(OperationError):
            await add(connection, COST_TABLE, {**lunch, "id": 7})
        assert await get_all(connection, COST_TABLE) == []

    @pytest.mark.asyncio
    async def test_add_rejects_unstorable_value(self, connection):
        with pytest.raises(OperationError) as exc_info:
            await add(connection, COST_TABLE, {"amount": object()})
        assert isinstance(exc_info.value.__cause__, DataError)

    @pytest.mark.asyncio
    async def test_add_without_connection(self, lunch):
        with pytest.raises(NotInitializedError):
            await add(None, COST_TABLE, lunch)

    @pytest.mark.asyncio
    async def test_ids_are_never_reused(self, connection, lunch):
        await add(connection, COST_TABLE, lunch)
        await add(connection, COST_TABLE, lunch)
        await delete(connection, COST_TABLE, 2)

        assert await add(connection, COST_TABLE, lunch) == 3

    @pytest.mark.asyncio
    async def test_concurrent_adds_get_unique_ids(self, connection, lunch):
        """Test many in-flight adds each get their own identifier."""
        ids = await asyncio.gather(
            *(add(connection, COST_TABLE, {**lunch, "n": n}) for n in range(20))
        )
        assert sorted(ids) == list(range(1, 21))
        assert len(await get_all(connection, COST_TABLE)) == 20

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, connection, lunch):
        """Test fields absent from the patch keep their value."""
        await add(connection, COST_TABLE, lunch)

        merged = await update(connection, COST_TABLE, 1, {"amount": 50, "note": "tip"})

        assert merged == {**lunch, "id": 1, "amount": 50, "note": "tip"}
        assert await get_all(connection, COST_TABLE) == [merged]

    @pytest.mark.asyncio
    async def test_update_keeps_identifier(self, connection, lunch):
        await add(connection, COST_TABLE, lunch)

        merged = await update(connection, COST_TABLE, 1, {"id": 99, "amount": 1})

        assert merged["id"] == 1
        assert [record["id"] for record in await get_all(connection, COST_TABLE)] == [1]

    @pytest.mark.asyncio
    async def test_update_missing_record(self, connection):
        with pytest.raises(NotFoundError):
            await update(connection, COST_TABLE, 42, {"amount": 1})
        assert await get_all(connection, COST_TABLE) == []

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, connection, lunch, groceries):
        await add(connection, COST_TABLE, lunch)
        await add(connection, COST_TABLE, groceries)

        await delete(connection, COST_TABLE, 2)
        await delete(connection, COST_TABLE, 2)
        await delete(connection, COST_TABLE, 1000)

        assert [record["id"] for record in await get_all(connection, COST_TABLE)] == [1]

    @pytest.mark.asyncio
    async def test_table_with_caller_supplied_keys(self, tmp_path):
        """Test a non auto-increment table uses the record's own key."""
        tables = [TableDeclaration(name="prefs", primary_key_field="key", auto_increment=False)]
        conn = await open_database("Prefs", 1, tables, data_dir=str(tmp_path))
        try:
            assert await add(conn, "prefs", {"key": "currency", "value": "ILS"}) == "currency"

            with pytest.raises(OperationError) as exc_info:
                await add(conn, "prefs", {"key": "currency", "value": "USD"})
            assert isinstance(exc_info.value.__cause__, ConstraintError)

            assert await get_all(conn, "prefs") == [{"key": "currency", "value": "ILS"}]
        finally:
            await conn.close()


class TestCursorScanner:
    """Tests for scan."""

    @pytest.mark.asyncio
    async def test_scan_filters_in_table_order(self, connection):
        for n in range(6):
            await add(connection, COST_TABLE, {"amount": n})

        result = await scan(connection, COST_TABLE, lambda record: record["amount"] % 2 == 0)

        assert [record["id"] for record in result] == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_scan_all_equals_get_all(self, connection, lunch, groceries):
        await add(connection, COST_TABLE, lunch)
        await add(connection, COST_TABLE, groceries)

        assert await scan(connection, COST_TABLE, lambda record: True) == await get_all(
            connection, COST_TABLE
        )

    @pytest.mark.asyncio
    async def test_scan_empty_table(self, connection):
        assert await scan(connection, COST_TABLE, lambda record: True) == []

    @pytest.mark.asyncio
    async def test_predicate_error_aborts_scan(self, connection, lunch):
        """Test a failing predicate yields an error, not partial results."""
        await add(connection, COST_TABLE, lunch)
        await add(connection, COST_TABLE, {"amount": 1})

        with pytest.raises(OperationError) as exc_info:
            await scan(connection, COST_TABLE, lambda record: record["category"] == "Food")
        assert isinstance(exc_info.value.__cause__, KeyError)

        # The connection is still usable afterwards
        assert len(await get_all(connection, COST_TABLE)) == 2

    @pytest.mark.asyncio
    async def test_scan_without_connection(self):
        with pytest.raises(NotInitializedError):
            await scan(None, COST_TABLE, lambda record: True)


class TestCostManagerScenario:
    """The end-to-end flow of the cost manager front end."""

    @pytest.mark.asyncio
    async def test_monthly_flow(self, connection, lunch, groceries):
        assert await add(connection, COST_TABLE, lunch) == 1
        assert await add(connection, COST_TABLE, groceries) == 2

        march = await scan(connection, COST_TABLE, month_filter(3, 2024))
        assert march == [{**lunch, "id": 1}]

        updated = await update(connection, COST_TABLE, 1, {"amount": 50})
        assert updated == {
            "id": 1,
            "amount": 50,
            "category": "Food",
            "description": "lunch",
            "date": "2024-03-15",
        }

        await delete(connection, COST_TABLE, 2)
        assert await get_all(connection, COST_TABLE) == [updated]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
