"""Logical database connections and live catalog introspection.

Each logical database (world, auth, characters) is reached through a SQLAlchemy
engine. Column metadata comes from ``information_schema.COLUMNS``.
"""

from __future__ import annotations

from typing import Any, Protocol

import sqlalchemy

from entity_model import DATABASE_IDS, decode_string, escape_string
from schema_differ import ColumnObservation


class Database(Protocol):
    schema_name: str

    def query(self, sql: str) -> list[tuple]: ...

    def execute(self, sql: str) -> None: ...


class SQLDatabase:
    def __init__(self, engine: sqlalchemy.engine.Engine, schema_name: str | None = None) -> None:
        self.engine = engine
        self.schema_name = schema_name or engine.url.database or ""

    def query(self, sql: str) -> list[tuple]:
        with self.engine.connect() as conn:
            result = conn.exec_driver_sql(sql, execution_options={"no_parameters": True})
            return [tuple(row) for row in result.fetchall()]

    def execute(self, sql: str) -> None:
        with self.engine.begin() as conn:
            conn.exec_driver_sql(sql, execution_options={"no_parameters": True})


def connect(url: str, schema_name: str | None = None) -> SQLDatabase:
    return SQLDatabase(sqlalchemy.create_engine(url), schema_name)


def columns_query(schema_name: str, table: str) -> str:
    schema_literal = escape_string(schema_name, "'")
    table_literal = escape_string(table, "'")
    return (
        "SELECT `COLUMN_NAME`, `COLUMN_TYPE`, `COLUMN_KEY` "
        "FROM `information_schema`.`COLUMNS` "
        f"WHERE `TABLE_SCHEMA` = '{schema_literal}' "
        f"AND `TABLE_NAME` = '{table_literal}' "
        "ORDER BY `ORDINAL_POSITION`;"
    )


def fetch_columns(db: Database, table: str) -> list[ColumnObservation]:
    observed: list[ColumnObservation] = []
    for name, col_type, col_key in db.query(columns_query(db.schema_name, table)):
        observed.append(
            ColumnObservation(
                name=decode_string(name),
                raw_type=decode_string(col_type),
                is_primary_key_member=decode_string(col_key).upper() == "PRI",
            )
        )
    return observed


def resolve_connections(config: dict[str, Any], url_overrides: dict[str, str] | None = None) -> dict[str, dict[str, str | None]]:
    """Merge the ``databases:`` config section with CLI url overrides."""
    section = (config or {}).get("databases", {}) or {}
    unknown = sorted(set(section) - set(DATABASE_IDS))
    if unknown:
        raise ValueError(f"Unknown logical databases in config: {unknown}")

    resolved: dict[str, dict[str, str | None]] = {}
    for db_id in DATABASE_IDS:
        entry = section.get(db_id) or {}
        if isinstance(entry, str):
            entry = {"url": entry}
        url = (url_overrides or {}).get(db_id) or entry.get("url")
        if url:
            resolved[db_id] = {"url": url, "schema": entry.get("schema")}
    return resolved


def open_databases(config: dict[str, Any], url_overrides: dict[str, str] | None = None) -> dict[str, SQLDatabase]:
    return {
        db_id: connect(entry["url"], entry["schema"])
        for db_id, entry in resolve_connections(config, url_overrides).items()
    }
