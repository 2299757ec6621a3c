"""
SQL source adapter backed by DuckDB.

Reads push entity and time filters down into SQL; the requested entity
ids are registered as a relation and joined inside the query.

Example:
    source = ff.DuckDBSource(table="taxi_departures", database="warehouse.duckdb")
    source = ff.DuckDBSource(query="SELECT * FROM read_parquet('trips/*.parquet')")
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, override

import duckdb as duckdb_
import polars as pl
from loguru import logger

from featureforge.sources.base import SourceAdapter


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class DuckDBSource(SourceAdapter):
    """
    DuckDB table or query source.

    Attributes:
        table: Table to read from and write to
        query: Read-only SQL query, used instead of ``table``
        database: DuckDB database path, ":memory:" by default
    """

    def __init__(
        self,
        table: str | None = None,
        query: str | None = None,
        database: str | Path = ":memory:",
        connection: duckdb_.DuckDBPyConnection | None = None,
    ) -> None:
        if (table is None) == (query is None):
            raise ValueError("DuckDBSource needs exactly one of table or query")

        self.table = table
        self.query = query
        self.database = str(database)
        self.name = table or "query"
        self._connection = connection or duckdb_.connect(self.database)

    def _relation_sql(self) -> str:
        if self.query is not None:
            return f"({self.query})"
        assert self.table is not None
        return _quote(self.table)

    def _columns(self, cursor: duckdb_.DuckDBPyConnection, fields: Sequence[str]) -> str:
        available = cursor.execute(
            f"SELECT * FROM {self._relation_sql()} LIMIT 0"
        ).pl().columns
        present = [f for f in dict.fromkeys(fields) if f in available]
        return ", ".join(_quote(f) for f in present)

    def _run(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        where: str = "",
        params: list[Any] | None = None,
        latest_by: str | None = None,
    ) -> pl.DataFrame:
        key = entities.columns[0]
        cursor = self._connection.cursor()
        try:
            cursor.register("_requested_entities", entities.unique())
            columns = self._columns(cursor, fields)
            sql = (
                f"SELECT {columns} FROM {self._relation_sql()} AS src "
                f"WHERE src.{_quote(key)} IN (SELECT {_quote(key)} FROM _requested_entities)"
                f"{where}"
            )
            if latest_by is not None:
                sql += (
                    f" QUALIFY row_number() OVER (PARTITION BY src.{_quote(key)} "
                    f"ORDER BY src.{_quote(latest_by)} DESC) = 1"
                )
            logger.debug(f"DuckDB query on {self.name}: {sql}")
            return cursor.execute(sql, params or []).pl()
        finally:
            cursor.close()

    def _read_range(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        timestamp_column: str,
        start: datetime | None,
        end: datetime | None,
    ) -> pl.DataFrame:
        where = ""
        params: list[Any] = []
        if start is not None:
            where += f" AND src.{_quote(timestamp_column)} >= ?"
            params.append(start)
        if end is not None:
            where += f" AND src.{_quote(timestamp_column)} <= ?"
            params.append(end)
        return self._run(entities, fields, where, params)

    def _upsert(self, rows: pl.DataFrame, keys: Sequence[str]) -> int:
        if self.table is None:
            raise ValueError("Query-backed DuckDB sources are read-only")

        cursor = self._connection.cursor()
        try:
            cursor.register("_incoming_rows", rows)
            exists = cursor.execute(
                "SELECT count(*) FROM information_schema.tables WHERE table_name = ?",
                [self.table],
            ).fetchone()
            table = _quote(self.table)

            if not exists or exists[0] == 0:
                cursor.execute(f"CREATE TABLE {table} AS SELECT * FROM _incoming_rows")
                return rows.height

            match = " AND ".join(
                f"{table}.{_quote(k)} = _incoming_rows.{_quote(k)}" for k in keys
            )
            cursor.begin()
            try:
                cursor.execute(
                    f"DELETE FROM {table} WHERE EXISTS (SELECT 1 FROM _incoming_rows WHERE {match})"
                )
                cursor.execute(f"INSERT INTO {table} BY NAME SELECT * FROM _incoming_rows")
            except duckdb_.Error:
                cursor.rollback()
                raise
            cursor.commit()
            return rows.height
        finally:
            cursor.close()

    def _newest(self, timestamp_column: str) -> datetime | None:
        cursor = self._connection.cursor()
        try:
            row = cursor.execute(
                f"SELECT max({_quote(timestamp_column)}) FROM {self._relation_sql()}"
            ).fetchone()
        finally:
            cursor.close()
        return row[0] if row else None

    @override
    async def fetch_by_entities(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
    ) -> pl.DataFrame:
        return await asyncio.to_thread(self._run, entities, fields)

    @override
    async def fetch_range(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        timestamp_column: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> pl.DataFrame:
        return await asyncio.to_thread(
            self._read_range, entities, fields, timestamp_column, start, end
        )

    @override
    async def fetch_latest_at_or_before(
        self,
        entities: pl.DataFrame,
        timestamp: datetime,
        fields: Sequence[str],
        timestamp_column: str,
    ) -> pl.DataFrame:
        return await asyncio.to_thread(
            self._run,
            entities,
            fields,
            f" AND src.{_quote(timestamp_column)} <= ?",
            [timestamp],
            timestamp_column,
        )

    @override
    async def write(self, rows: pl.DataFrame, keys: Sequence[str]) -> int:
        return await asyncio.to_thread(self._upsert, rows, keys)

    @override
    async def describe_freshness(self, timestamp_column: str) -> datetime | None:
        return await asyncio.to_thread(self._newest, timestamp_column)

    @override
    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": "duckdb", "database": self.database}
        if self.table is not None:
            result["table"] = self.table
        else:
            result["query"] = self.query
        return result
