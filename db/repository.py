"""Generic row-store accessor for stageflow.

Insert/select/update/delete rows by table and equality filters, with
ordering. The repository never commits: the caller owns the transaction
so that a task write and the project write it triggers land together.
"""

import json
import logging
import re
import sqlite3
from collections.abc import Iterable, Sequence
from typing import Any

from db.errors import PersistenceError
from db.schema import TABLES

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _quote(identifier: str) -> str:
    if not _IDENTIFIER.match(identifier):
        raise PersistenceError(f"Invalid column name '{identifier}'")
    return f'"{identifier}"'


def _encode(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return int(value)
    return value


class Repository:
    """Table-generic persistence over a single sqlite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _check_table(self, table: str) -> str:
        if table not in TABLES:
            raise PersistenceError(f"Unknown table '{table}'")
        return _quote(table)

    def _where(self, filters: dict[str, Any] | None) -> tuple[str, list[Any]]:
        if not filters:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                placeholders = ", ".join("?" for _ in values)
                clauses.append(f"{_quote(column)} IN ({placeholders})")
                params.extend(values)
            elif value is None:
                clauses.append(f"{_quote(column)} IS NULL")
            else:
                clauses.append(f"{_quote(column)} = ?")
                params.append(_encode(value))
        return " WHERE " + " AND ".join(clauses), params

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as e:
            logger.exception("Persistence call failed: %s", sql)
            raise PersistenceError(str(e), {"statement": sql}) from e

    def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        quoted = self._check_table(table)
        columns = ", ".join(_quote(c) for c in values)
        placeholders = ", ".join("?" for _ in values)
        self._execute(
            f"INSERT INTO {quoted} ({columns}) VALUES ({placeholders})",  # noqa: S608
            [_encode(v) for v in values.values()],
        )
        row = self.select_one(table, {"id": values["id"]})
        if row is None:
            raise PersistenceError(f"Inserted row '{values['id']}' not readable")
        return row

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | Iterable[str] | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Return matching rows, ascending by ``order_by`` columns unless ``descending``."""
        quoted = self._check_table(table)
        where, params = self._where(filters)
        sql = f"SELECT * FROM {quoted}{where}"  # noqa: S608
        if order_by:
            columns = [order_by] if isinstance(order_by, str) else list(order_by)
            direction = "DESC" if descending else "ASC"
            sql += " ORDER BY " + ", ".join(
                f"{_quote(c)} {direction}" for c in columns
            )
        rows = self._execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def select_one(
        self, table: str, filters: dict[str, Any]
    ) -> dict[str, Any] | None:
        rows = self.select(table, filters)
        return rows[0] if rows else None

    def update(
        self, table: str, filters: dict[str, Any], values: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Update matching rows; return them re-read. Empty list if none matched."""
        quoted = self._check_table(table)
        matched = self.select(table, filters)
        if not matched:
            return []
        if values:
            where, params = self._where(filters)
            assignments = ", ".join(f"{_quote(c)} = ?" for c in values)
            cursor = self._execute(
                f"UPDATE {quoted} SET {assignments}{where}",  # noqa: S608
                [_encode(v) for v in values.values()] + params,
            )
            # Filters are re-checked by the UPDATE itself; a concurrent
            # writer may have invalidated the earlier select.
            if cursor.rowcount == 0:
                return []
        return self.select(table, {"id": [row["id"] for row in matched]})

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        """Delete matching rows; return how many were removed."""
        quoted = self._check_table(table)
        where, params = self._where(filters)
        cursor = self._execute(f"DELETE FROM {quoted}{where}", params)  # noqa: S608
        return cursor.rowcount

    def count(self, table: str, filters: dict[str, Any] | None = None) -> int:
        quoted = self._check_table(table)
        where, params = self._where(filters)
        row = self._execute(
            f"SELECT COUNT(*) AS cnt FROM {quoted}{where}", params  # noqa: S608
        ).fetchone()
        return row["cnt"]
