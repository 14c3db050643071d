"""SQLite database client wrapper with CRUD operations."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import settings


logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    """Raised when the database driver reports a failure."""


class UniqueConstraintError(DatabaseError):
    """Raised when a write violates a UNIQUE index."""


class RecordNotFoundError(KeyError):
    """Raised when a record looked up by id does not exist."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _validate_field_name(field: str) -> None:
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", field):
        msg = f"Invalid field name: {field}"
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value as a JSON string body; parse_filter decodes it back."""
    return json.dumps(str(value))[1:-1]


def _convert_record_ids(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ID and foreign key fields to strings for Pydantic compatibility."""
    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
    return converted


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the way it is stored: UTC, microsecond precision."""
    moment = moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment.astimezone(UTC)
    return moment.isoformat(timespec="microseconds")


def _to_db_value(value: Any) -> Any:  # noqa: ANN401
    """Serialize Python values into types SQLite stores natively."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        escaped = value.replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a single comparison expression into a SQL condition and its parameters."""
    null_match = re.fullmatch(r"""(\w+)\s*(=|!=)\s*null""", comparison.strip())
    if null_match:
        field, op = null_match.group(1), null_match.group(2)
        return (f"{field} IS NULL" if op == "=" else f"{field} IS NOT NULL"), []

    # Values are double-quoted JSON string bodies, as produced by sanitize_param
    match = re.fullmatch(
        r'(\w+)\s*(=|!=|>=|<=|>|<|~)\s*"((?:[^"\\]|\\.)*)"',
        comparison.strip(),
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    try:
        raw_value = json.loads(f'"{match.group(3)}"')
    except json.JSONDecodeError as e:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg) from e

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    if is_like:
        return f"{field} LIKE ? ESCAPE '\\'", [value]
    return f"{field} {sql_op} ?", [value]


def _split_outside_quotes(text: str, separator: str) -> list[str]:
    """Split on ``separator`` where it is outside quoted values and parentheses."""
    parts = []
    current = ""
    paren_depth = 0
    in_quotes = False
    escaped = False

    for char in text:
        current += char
        if in_quotes:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_quotes = False
            continue

        if char == '"':
            in_quotes = True
        elif char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1
        elif paren_depth == 0 and current.endswith(separator):
            parts.append(current[: -len(separator)].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_conditions = []
    or_params: list[str | int | float | None] = []

    for part in _split_outside_quotes(inner, "||"):
        cond, values = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.extend(values)

    return f"({' OR '.join(or_conditions)})", or_params


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Supported: ``field op "value"`` with ``= != > < >= <= ~``, ``field = null``,
    conjunction with ``&&`` and parenthesized ``||`` groups.
    """
    if not filter_query:
        return "", []

    conditions = []
    params: list[str | int | float | None] = []

    for raw_part in _split_outside_quotes(filter_query, "&&"):
        part = raw_part.strip()

        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
        else:
            cond, cond_params = _parse_single_comparison(part)
        conditions.append(cond)
        params.extend(cond_params)

    return " AND ".join(conditions), params


def parse_sort(sort: str) -> str:
    """Translate ``-priority,created_at`` or ``created_at DESC`` into an ORDER BY clause."""
    if not sort:
        return "id ASC"

    clauses = []
    for raw_term in sort.split(","):
        term = raw_term.strip()
        match = re.fullmatch(r"([+-]?)([A-Za-z_][A-Za-z0-9_]*)(?:\s+(ASC|DESC))?", term, re.IGNORECASE)
        if not match:
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return "id ASC"
        prefix, column, direction = match.groups()
        if direction is None:
            direction = "DESC" if prefix == "-" else "ASC"
        clauses.append(f"{column} {direction.upper()}")

    return ", ".join(clauses)


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_write_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_db_lock = asyncio.Lock()

# Connection owning the transaction the current task runs in, if any.
_active_transaction: ContextVar[aiosqlite.Connection | None] = ContextVar("_active_transaction", default=None)


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    return thread_id, loop_id, str(get_db_path(db_path))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = Path(cache_key[2])
        path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode: transactions are opened explicitly by transaction().
        conn = await aiosqlite.connect(str(path), isolation_level=None)
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")

        _db_connections[cache_key] = conn
        _write_locks[cache_key] = asyncio.Lock()

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": cache_key[2], "thread_id": cache_key[0], "loop_id": cache_key[1]},
        )
        return conn


def _write_lock(db_path: str | None = None) -> asyncio.Lock:
    return _write_locks[_cache_key(db_path)]


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key not in _db_connections:
        return

    try:
        async with _db_lock:
            conn = _db_connections.pop(cache_key, None)
            _write_locks.pop(cache_key, None)
            if conn is not None:
                await conn.close()
                logger.info(
                    "Closed SQLite connection",
                    extra={"thread_id": cache_key[0], "loop_id": cache_key[1], "db_path": cache_key[2]},
                )
    except (aiosqlite.Error, ValueError) as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": cache_key[0], "loop_id": cache_key[1]},
        )


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from src.core import schema  # noqa: PLC0415 - schema imports this module

    await schema.init_db(db_path=db_path)


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run the enclosed writes as one all-or-nothing SQLite transaction.

    Writers are serialized on the shared connection. Helpers called inside the
    block join the transaction. Nested blocks join the outermost one.

    Reads are not isolated: they run on the same connection, so a read from
    another task while a transaction is open sees its uncommitted rows. Unique
    indexes and guarded ``update_where`` calls keep concurrent writers correct;
    a read-then-write check outside a transaction is only a fast path.

    Usage:
        async with db_client.transaction():
            await db_client.create_record(...)
            await db_client.increment_field(...)
    """
    active = _active_transaction.get()
    if active is not None:
        yield active
        return

    conn = await get_connection()
    async with _write_lock():
        await conn.execute("BEGIN IMMEDIATE")
        token = _active_transaction.set(conn)
        try:
            yield conn
        except BaseException:
            await conn.execute("ROLLBACK")
            logger.info("Rolled back transaction")
            raise
        else:
            await conn.execute("COMMIT")
        finally:
            _active_transaction.reset(token)


@asynccontextmanager
async def _writer() -> AsyncIterator[aiosqlite.Connection]:
    """Yield a connection safe to write on, outside or inside a transaction."""
    active = _active_transaction.get()
    if active is not None:
        yield active
        return

    conn = await get_connection()
    async with _write_lock():
        yield conn


def _wrap_error(operation: str, collection: str, error: Exception) -> DatabaseError:
    if isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error):
        logger.error("Table not found", extra={"collection": collection})
        return DatabaseError(f"Table '{collection}' does not exist. Call init_db() first.")
    if isinstance(error, aiosqlite.IntegrityError) and "UNIQUE constraint failed" in str(error):
        logger.info("unique_constraint_violation", extra={"collection": collection, "error": str(error)})
        return UniqueConstraintError(f"Duplicate record in {collection}: {error}")
    logger.error(f"{operation}_failed", extra={"collection": collection, "error": str(error)})
    return DatabaseError(f"Failed to {operation.replace('_', ' ')} in {collection}: {error}")


def _row_to_record(cursor: aiosqlite.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    columns = [description[0] for description in cursor.description]
    return _convert_record_ids(dict(zip(columns, row, strict=True)))


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    _validate_collection_name(collection)
    try:
        async with _writer() as conn:
            columns = list(data.keys())
            for column in columns:
                _validate_field_name(column)
            columns_str = ", ".join(columns)
            placeholders_str = ", ".join("?" for _ in columns)
            values = [_to_db_value(data[key]) for key in columns]

            query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - names are validated
            cursor = await conn.execute(query, values)
            record_id = cursor.lastrowid
    except aiosqlite.Error as e:
        raise _wrap_error("create_record", collection, e) from e

    logger.debug("Created record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=str(record_id))


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)
    try:
        conn = await get_connection()
        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        row = await cursor.fetchone()
    except ValueError as e:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}") from e
    except aiosqlite.Error as e:
        raise _wrap_error("get_record", collection, e) from e

    if row is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    return _row_to_record(cursor, row)


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)
    _validate_collection_name(collection)

    try:
        async with _writer() as conn:
            for column in data:
                _validate_field_name(column)
            set_clause = ", ".join(f"{key} = ?" for key in data)
            values = [_to_db_value(val) for val in data.values()]
            values.append(int(record_id))

            query = f"UPDATE {collection} SET {set_clause} WHERE id = ?"  # noqa: S608 - names are validated
            cursor = await conn.execute(query, values)
            if cursor.rowcount == 0:
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)
    except aiosqlite.Error as e:
        raise _wrap_error("update_record", collection, e) from e

    logger.debug("Updated record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def update_where(*, collection: str, filter_query: str, data: dict[str, Any]) -> int:
    """Update every record matching the filter and return how many rows changed.

    A compare-and-set: callers guard a state transition by putting the
    expected current state in the filter and checking the returned count.
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)
    _validate_collection_name(collection)
    where_clause, params = parse_filter(filter_query)
    if not where_clause:
        msg = "update_where requires a filter"
        raise ValueError(msg)

    try:
        async with _writer() as conn:
            for column in data:
                _validate_field_name(column)
            set_clause = ", ".join(f"{key} = ?" for key in data)
            values = [_to_db_value(val) for val in data.values()]
            query = f"UPDATE {collection} SET {set_clause} WHERE {where_clause}"  # noqa: S608 - names are validated
            cursor = await conn.execute(query, [*values, *params])
            changed = cursor.rowcount
    except aiosqlite.Error as e:
        raise _wrap_error("update_where", collection, e) from e

    logger.debug("Updated records", extra={"collection": collection, "count": changed})
    return changed


async def increment_field(*, collection: str, record_id: str, field: str, amount: int) -> dict[str, Any]:
    """Atomically add ``amount`` to a numeric column and return the updated record."""
    _validate_collection_name(collection)
    _validate_field_name(field)

    try:
        async with _writer() as conn:
            query = f"UPDATE {collection} SET {field} = {field} + ? WHERE id = ?"  # noqa: S608 - names are validated
            cursor = await conn.execute(query, (amount, int(record_id)))
            if cursor.rowcount == 0:
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)
    except aiosqlite.Error as e:
        raise _wrap_error("increment_field", collection, e) from e

    logger.debug(
        "Incremented field",
        extra={"collection": collection, "record_id": record_id, "field": field, "amount": amount},
    )
    return await get_record(collection=collection, record_id=record_id)


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)
    try:
        async with _writer() as conn:
            query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            cursor = await conn.execute(query, (int(record_id),))
            if cursor.rowcount == 0:
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)
    except aiosqlite.Error as e:
        raise _wrap_error("delete_record", collection, e) from e

    logger.debug("Deleted record", extra={"collection": collection, "record_id": record_id})


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    _validate_collection_name(collection)
    where_clause, params = parse_filter(filter_query)
    where_sql = f"WHERE {where_clause}" if where_clause else ""
    order_sql = parse_sort(sort)
    offset = (page - 1) * per_page

    try:
        conn = await get_connection()
        query = f"SELECT * FROM {collection} {where_sql} ORDER BY {order_sql} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, [*params, per_page, offset])
        rows = await cursor.fetchall()
    except aiosqlite.Error as e:
        raise _wrap_error("list_records", collection, e) from e

    records = [_row_to_record(cursor, row) for row in rows]
    logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
    return records


async def list_all_records(
    *,
    collection: str,
    filter_query: str = "",
    sort: str = "",
    chunk_size: int = 200,
) -> list[dict[str, Any]]:
    """List every matching record, paging through the table in chunks."""
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        chunk = await list_records(
            collection=collection,
            page=page,
            per_page=chunk_size,
            filter_query=filter_query,
            sort=sort,
        )
        records.extend(chunk)
        if len(chunk) < chunk_size:
            return records
        page += 1


async def count_records(*, collection: str, filter_query: str = "") -> int:
    """Count records matching the filter."""
    _validate_collection_name(collection)
    where_clause, params = parse_filter(filter_query)
    where_sql = f"WHERE {where_clause}" if where_clause else ""

    try:
        conn = await get_connection()
        cursor = await conn.execute(f"SELECT COUNT(*) FROM {collection} {where_sql}", params)  # noqa: S608 - collection is validated
        row = await cursor.fetchone()
    except aiosqlite.Error as e:
        raise _wrap_error("count_records", collection, e) from e

    return int(row[0]) if row else 0


async def get_first_record(*, collection: str, filter_query: str, sort: str = "") -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, per_page=1, filter_query=filter_query, sort=sort)
    return records[0] if records else None
