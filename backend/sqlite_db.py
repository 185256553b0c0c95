"""
SQLite document store that mimics the Motor/MongoDB async API.

This is the storage client every consistency component talks to. It
offers CRUD + query primitives against named collections and nothing
more: there are no multi-document or cross-collection transactions, so
callers that keep several collections in step must tolerate partial
failure themselves.

Architecture:
  - Each collection is a SQLite table with:
    - _id TEXT PRIMARY KEY (auto-generated hex id if not provided)
    - data TEXT (the full document as JSON)
  - Query operators ($in, $lt, $or, etc.) are translated to SQL WHERE clauses
  - Unique indexes are real SQLite expression indexes over json_extract,
    so concurrent inserts of the same key fail with DuplicateKeyError
  - Cursors support .sort(), .limit(), async iteration

Usage:
    db = SQLiteDatabase("data/app.db")
    await db.connect()
    tag = await db.tags.find_one({"ownerId": "u1", "nameLower": "q1"})
    await db["note_tags"].insert_one({"noteId": "n1", "tagId": tag["_id"]})
"""

import json
import logging
import re
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import aiosqlite

logger = logging.getLogger(__name__)

# Fields that are converted back to datetime when documents are read
DATE_FIELDS = ("createdAt", "updatedAt")


class DuplicateKeyError(Exception):
    """Raised when a write violates a unique index (mirrors pymongo's name)."""

    def __init__(self, collection: str, message: str):
        super().__init__(f"{collection}: {message}")
        self.collection = collection


# ============================================================
# ObjectId replacement — generates MongoDB-style hex IDs
# ============================================================

class ObjectId:
    """MongoDB ObjectId replacement using UUID hex strings.

    Generates 24-character hex strings that look like MongoDB ObjectIds.
    Accepts existing ID strings for lookups.
    """

    def __init__(self, oid: Optional[str] = None):
        if oid:
            self._id = str(oid)
        else:
            self._id = uuid.uuid4().hex[:24]

    def __str__(self) -> str:
        return self._id


# ============================================================
# Query translator — MongoDB query operators → SQL
# ============================================================

_COMPARISON_OPS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}


def _serialize_value(val: Any) -> Any:
    """Serialize a Python value for JSON storage."""
    if isinstance(val, datetime):
        return val.isoformat()
    if isinstance(val, ObjectId):
        return str(val)
    if isinstance(val, (list, tuple)):
        return [_serialize_value(v) for v in val]
    if isinstance(val, dict):
        return {k: _serialize_value(v) for k, v in val.items()}
    return val


def _deserialize_doc(doc_json: str) -> Dict[str, Any]:
    """Deserialize a JSON document, converting ISO dates back to datetime."""
    doc = json.loads(doc_json)
    for key in DATE_FIELDS:
        if key in doc and doc[key] and isinstance(doc[key], str):
            try:
                doc[key] = datetime.fromisoformat(doc[key])
            except (ValueError, TypeError):
                pass
    return doc


def _build_where(query: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Translate a MongoDB query dict to SQL WHERE clause + params.

    Supports: exact match, null match, $gt, $gte, $lt, $lte, $in, $or,
    $and, nested dot notation. `_id` is matched against
    the primary key column rather than the JSON body.

    Args:
        query: MongoDB-style query dict.

    Returns:
        (where_clause, params) — clause does NOT include 'WHERE' keyword.
    """
    if not query:
        return "1=1", []

    conditions = []
    params = []

    for key, value in query.items():
        if key in ("$or", "$and"):
            parts = []
            for sub_query in value:
                sub_where, sub_params = _build_where(sub_query)
                parts.append(f"({sub_where})")
                params.extend(sub_params)
            if not parts:
                conditions.append("0" if key == "$or" else "1=1")
            else:
                joiner = " OR " if key == "$or" else " AND "
                conditions.append(f"({joiner.join(parts)})")

        elif isinstance(value, dict) and any(k.startswith("$") for k in value):
            column = _json_extract(key)
            for op, op_val in value.items():
                if op in _COMPARISON_OPS:
                    conditions.append(f"{column} {_COMPARISON_OPS[op]} ?")
                    params.append(_serialize_value(op_val))
                elif op == "$in":
                    if op_val:
                        placeholders = ",".join("?" for _ in op_val)
                        conditions.append(f"{column} IN ({placeholders})")
                        params.extend(_serialize_value(v) for v in op_val)
                    else:
                        conditions.append("0")  # Empty $in matches nothing
                else:
                    raise ValueError(f"Unsupported query operator: {op}")

        elif value is None:
            column = _json_extract(key)
            conditions.append(f"{column} IS NULL")

        else:
            column = _json_extract(key)
            conditions.append(f"{column} = ?")
            if isinstance(value, bool):
                params.append(1 if value else 0)
            else:
                params.append(_serialize_value(value))

    return " AND ".join(conditions) if conditions else "1=1", params


def _json_extract(field: str) -> str:
    """Build the SQL expression for a field path.

    `_id` maps to the primary key column. Everything else handles dot
    notation: 'user.name' → json_extract(data, '$.user.name').
    Sanitizes field name to prevent SQL injection via crafted field paths.
    """
    if field == "_id":
        return "_id"
    sanitized = re.sub(r"[^a-zA-Z0-9._\-]", "", field)
    return f"json_extract(data, '$.{sanitized}')"


def _normalize_keys(keys: Union[str, List[Tuple[str, int]], Tuple[str, int]]) -> List[Tuple[str, int]]:
    """Accept "field", ("field", dir) or [("f1", dir), ("f2", dir)]."""
    if isinstance(keys, str):
        return [(keys, 1)]
    if isinstance(keys, tuple) and len(keys) == 2 and isinstance(keys[1], int):
        return [keys]
    return list(keys)


def _build_sort(sort_spec) -> str:
    """Translate MongoDB sort spec to SQL ORDER BY."""
    if not sort_spec:
        return ""
    parts = []
    for field, direction in _normalize_keys(sort_spec):
        d = "DESC" if direction == -1 else "ASC"
        parts.append(f"{_json_extract(field)} {d}")
    return "ORDER BY " + ", ".join(parts)


def _apply_update(doc: Dict, update: Dict) -> Dict:
    """Apply a {"$set": {...}} update to a document in-memory.

    Counters are read-modify-write at the caller (see CounterAdjuster),
    so $set on top-level fields is the only operator.
    """
    for op, fields in update.items():
        if op != "$set":
            raise ValueError(f"Unsupported update operator: {op}")
        for k, v in fields.items():
            doc[k] = _serialize_value(v)
    return doc


def _dumps(doc: Dict) -> str:
    return json.dumps(_serialize_value(doc), default=str)


# ============================================================
# Cursor — async iterator over query results
# ============================================================

class SQLiteCursor:
    """Async cursor that mimics Motor's cursor with sort/limit.

    Lazily executes the query on first iteration or when to_list() is called.
    """

    def __init__(self, collection: "SQLiteCollection", query: Dict,
                 projection: Optional[Dict] = None):
        self._collection = collection
        self._query = query
        self._projection = projection
        self._sort_spec = None
        self._limit_val = 0
        self._results: Optional[List[Dict]] = None

    def sort(self, key_or_list, direction=None) -> "SQLiteCursor":
        """Set sort order. Accepts MongoDB-style sort specs."""
        if direction is not None:
            self._sort_spec = [(key_or_list, direction)]
        else:
            self._sort_spec = _normalize_keys(key_or_list)
        return self

    def limit(self, count: int) -> "SQLiteCursor":
        """Limit the number of results."""
        self._limit_val = count
        return self

    async def _execute(self) -> List[Dict]:
        if self._results is not None:
            return self._results

        await self._collection._ensure_table()
        where, params = _build_where(self._query)
        order = _build_sort(self._sort_spec) if self._sort_spec else ""

        sql = f"SELECT _id, data FROM [{self._collection.name}] WHERE {where} {order}"
        if self._limit_val > 0:
            sql += f" LIMIT {int(self._limit_val)}"

        results = []
        async with self._collection._db._get_conn() as conn:
            async with conn.execute(sql, params) as cursor:
                async for row in cursor:
                    doc = _deserialize_doc(row[1])
                    doc["_id"] = row[0]
                    if self._projection:
                        doc = _apply_projection(doc, self._projection)
                    results.append(doc)

        self._results = results
        return results

    async def to_list(self, length: Optional[int] = None) -> List[Dict]:
        """Execute and return results as a list."""
        results = await self._execute()
        if length:
            return results[:length]
        return results

    def __aiter__(self):
        self._iter_index = 0
        self._results = None  # Reset for re-iteration
        return self

    async def __anext__(self) -> Dict:
        results = await self._execute()
        if self._iter_index >= len(results):
            raise StopAsyncIteration
        doc = results[self._iter_index]
        self._iter_index += 1
        return doc


def _apply_projection(doc: Dict, projection: Dict) -> Dict:
    """Keep _id plus the fields the projection includes ({"field": 1})."""
    result = {"_id": doc.get("_id")}
    for field, val in projection.items():
        if val and field in doc:
            result[field] = doc[field]
    return result


# ============================================================
# Collection — mimics Motor's AsyncIOMotorCollection
# ============================================================

class SQLiteCollection:
    """Async SQLite collection that mimics Motor's MongoDB collection API.

    Each collection is a SQLite table with columns:
      - _id TEXT PRIMARY KEY
      - data TEXT (JSON document)
    """

    def __init__(self, db: "SQLiteDatabase", name: str):
        if not re.fullmatch(r"[A-Za-z0-9_\-]+", name):
            raise ValueError(f"Invalid collection name: {name!r}")
        self._db = db
        self.name = name
        self._table_ready = False

    async def _ensure_table(self) -> None:
        """Create the table if it doesn't exist."""
        if self._table_ready:
            return
        async with self._db._get_conn() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS [{self.name}] (
                    _id TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)
            await conn.commit()
        self._table_ready = True

    async def _write(self, sql: str, params: Tuple) -> int:
        """Run a single write statement, translating unique violations."""
        async with self._db._get_conn() as conn:
            try:
                cursor = await conn.execute(sql, params)
            except sqlite3.IntegrityError as e:
                # Only the failed statement is undone; the shared connection must not roll back
                raise DuplicateKeyError(self.name, str(e)) from e
            await conn.commit()
            return cursor.rowcount

    async def insert_one(self, document: Dict) -> "InsertOneResult":
        """Insert a single document."""
        await self._ensure_table()
        doc = dict(document)
        _id = doc.pop("_id", None)
        _id = str(_id if _id is not None else ObjectId())
        await self._write(
            f"INSERT INTO [{self.name}] (_id, data) VALUES (?, ?)",
            (_id, _dumps(doc)),
        )
        return InsertOneResult(_id)

    async def insert_many(self, documents: List[Dict]) -> "InsertManyResult":
        """Insert multiple documents one by one.

        Not atomic: documents before a failing one stay inserted.
        """
        ids = []
        for doc in documents:
            result = await self.insert_one(doc)
            ids.append(result.inserted_id)
        return InsertManyResult(ids)

    async def find_one(self, query: Optional[Dict] = None,
                       projection: Optional[Dict] = None,
                       sort: Optional[list] = None) -> Optional[Dict]:
        """Find a single document matching the query.

        Args:
            query: MongoDB-style query dict.
            projection: Field inclusion/exclusion.
            sort: Optional sort spec for picking which doc to return.
        """
        cursor = self.find(query, projection).limit(1)
        if sort:
            cursor.sort(sort)
        results = await cursor.to_list()
        return results[0] if results else None

    def find(self, query: Optional[Dict] = None,
             projection: Optional[Dict] = None) -> SQLiteCursor:
        """Return a cursor for documents matching the query."""
        return SQLiteCursor(self, query or {}, projection)

    async def update_one(self, query: Dict, update: Dict) -> "UpdateResult":
        """Update a single document (read, apply $set, write back)."""
        doc = await self.find_one(query)

        if doc is None:
            return UpdateResult(0, 0)

        _id = doc.pop("_id")
        updated = _apply_update(doc, update)
        await self._write(
            f"UPDATE [{self.name}] SET data = ? WHERE _id = ?",
            (_dumps(updated), _id),
        )
        return UpdateResult(1, 1)

    async def delete_one(self, query: Dict) -> "DeleteResult":
        """Delete a single document."""
        doc = await self.find_one(query, projection={"_id": 1})
        if doc is None:
            return DeleteResult(0)
        deleted = await self._write(f"DELETE FROM [{self.name}] WHERE _id = ?", (doc["_id"],))
        return DeleteResult(deleted)

    async def delete_many(self, query: Dict) -> "DeleteResult":
        """Delete all documents matching the query."""
        await self._ensure_table()
        where, params = _build_where(query)
        deleted = await self._write(f"DELETE FROM [{self.name}] WHERE {where}", tuple(params))
        return DeleteResult(deleted)

    async def count_documents(self, query: Optional[Dict] = None) -> int:
        """Count documents matching the query."""
        await self._ensure_table()
        where, params = _build_where(query or {})
        sql = f"SELECT COUNT(*) FROM [{self.name}] WHERE {where}"

        async with self._db._get_conn() as conn:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def distinct(self, field: str, query: Optional[Dict] = None) -> List:
        """Get distinct non-null values for a field."""
        await self._ensure_table()
        where, params = _build_where(query or {})
        sql = f"SELECT DISTINCT {_json_extract(field)} FROM [{self.name}] WHERE {where}"

        results = []
        async with self._db._get_conn() as conn:
            async with conn.execute(sql, params) as cursor:
                async for row in cursor:
                    if row[0] is not None:
                        results.append(row[0])
        return results

    async def create_index(self, keys, unique: bool = False,
                           name: Optional[str] = None) -> str:
        """Create a (possibly unique) expression index over document fields.

        Rows where any key field is null never conflict, which matches
        SQLite's NULL semantics for unique indexes.

        Returns:
            The index name.
        """
        await self._ensure_table()
        fields = [field for field, _ in _normalize_keys(keys)]
        if name is None:
            suffix = "_".join(re.sub(r"[^A-Za-z0-9]", "", f) for f in fields)
            name = f"ix_{self.name}_{suffix}{'_uniq' if unique else ''}"
        columns = ", ".join(_json_extract(f) for f in fields)
        async with self._db._get_conn() as conn:
            await conn.execute(
                f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS [{name}] "
                f"ON [{self.name}] ({columns})"
            )
            await conn.commit()
        return name


# ============================================================
# Result types — mimic Motor/PyMongo result objects
# ============================================================

class InsertOneResult:
    def __init__(self, inserted_id: str):
        self.inserted_id = inserted_id


class InsertManyResult:
    def __init__(self, inserted_ids: List[str]):
        self.inserted_ids = inserted_ids


class UpdateResult:
    def __init__(self, matched_count: int, modified_count: int):
        self.matched_count = matched_count
        self.modified_count = modified_count


class DeleteResult:
    def __init__(self, deleted_count: int):
        self.deleted_count = deleted_count


# ============================================================
# Database — mimics Motor's AsyncIOMotorDatabase
# ============================================================

class SQLiteDatabase:
    """Async SQLite database that mimics Motor's MongoDB database API.

    Collections are accessed as attributes or items: db.notes, db["note_tags"].
    Each collection becomes a table in the SQLite database.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._collections: Dict[str, SQLiteCollection] = {}

    async def connect(self) -> None:
        """Open the SQLite connection."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path, timeout=30.0)
        # WAL for concurrent read/write
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        logger.info(f"SQLite database connected: {self._db_path}")

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite database closed")

    def _get_conn(self):
        """Get the connection (context manager compatible)."""
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return _ConnContext(self._conn)

    async def command(self, cmd: str) -> Dict:
        """Mimic MongoDB admin commands (ping only)."""
        if cmd == "ping":
            async with self._get_conn() as conn:
                await conn.execute("SELECT 1")
        return {"ok": 1}

    def __getattr__(self, name: str) -> SQLiteCollection:
        """Access collections as attributes: db.notes, db.tags, etc."""
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name: str) -> SQLiteCollection:
        """Access collections as items: db['note_tags']."""
        if name not in self._collections:
            self._collections[name] = SQLiteCollection(self, name)
        return self._collections[name]


class _ConnContext:
    """Async context manager wrapper for the shared connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def __aenter__(self) -> aiosqlite.Connection:
        return self._conn

    async def __aexit__(self, *args):
        pass  # Connection stays open — managed by SQLiteDatabase
