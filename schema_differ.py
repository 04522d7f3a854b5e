"""Compare declared table fields against catalog columns and plan the statements that reconcile them."""

from __future__ import annotations

import dataclasses
from typing import Iterable

from entity_model import FieldSpec


ADD_COLUMN = "ADD COLUMN"
DROP_COLUMN = "DROP COLUMN"
MODIFY_COLUMN = "MODIFY COLUMN"
DROP_TABLE = "DROP TABLE"
CREATE_TABLE = "CREATE TABLE"
BACKFILL_DEFAULT = "BACKFILL DEFAULT"


@dataclasses.dataclass(frozen=True)
class ColumnObservation:
    name: str
    raw_type: str
    is_primary_key_member: bool

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_type", self.raw_type.upper())


@dataclasses.dataclass(frozen=True)
class MigrationStep:
    kind: str
    destructive: bool
    field: FieldSpec | None = None
    column: str | None = None
    fields: tuple[FieldSpec, ...] = ()
    reason: str = ""

    @property
    def column_name(self) -> str | None:
        if self.field is not None:
            return self.field.name
        return self.column


def add_column(field: FieldSpec, destructive: bool = False, reason: str = "") -> MigrationStep:
    return MigrationStep(ADD_COLUMN, destructive, field=field, reason=reason)


def drop_column(name: str, reason: str) -> MigrationStep:
    return MigrationStep(DROP_COLUMN, True, column=name, reason=reason)


def modify_column_type(field: FieldSpec, reason: str) -> MigrationStep:
    return MigrationStep(MODIFY_COLUMN, True, field=field, reason=reason)


def drop_table_if_exists(reason: str) -> MigrationStep:
    return MigrationStep(DROP_TABLE, True, reason=reason)


def create_table(fields: Iterable[FieldSpec], destructive: bool = False, reason: str = "") -> MigrationStep:
    return MigrationStep(CREATE_TABLE, destructive, fields=tuple(fields), reason=reason)


def backfill_default(field: FieldSpec) -> MigrationStep:
    return MigrationStep(BACKFILL_DEFAULT, False, field=field)


def find_field(fields: Iterable[FieldSpec], name: str) -> FieldSpec | None:
    for f in fields:
        if f.name == name:
            return f
    return None


def type_change_reason(table_name: str, obs: ColumnObservation, field: FieldSpec) -> str:
    return f"{table_name}:{obs.name} changed type from {obs.raw_type} to {field.scalar_type.name}"


def reconcile(
    table_name: str,
    fields: Iterable[FieldSpec],
    observed: Iterable[ColumnObservation],
) -> tuple[list[MigrationStep], bool]:
    fields = tuple(fields)
    observed = list(observed)

    if not observed:
        return [create_table(fields)], False

    rebuild = False
    rebuild_reason = ""
    matched: set[str] = set()
    steps: list[MigrationStep] = []

    for obs in observed:
        field = find_field(fields, obs.name)
        if field is None:
            steps.append(drop_column(obs.name, f"{table_name}:{obs.name} was removed"))
            continue
        matched.add(field.name)

        if obs.raw_type == field.scalar_type.read_type:
            continue

        reason = type_change_reason(table_name, obs, field)
        if field.scalar_type.is_string or obs.raw_type == "TEXT":
            # Text storage is never altered in place: replace the column.
            steps.append(drop_column(field.name, reason))
            steps.append(add_column(field, destructive=True, reason=reason))
        elif obs.is_primary_key_member:
            rebuild = True
            rebuild_reason = f"{reason} and was a primary key (whole db will be destroyed)"
            break
        else:
            steps.append(modify_column_type(field, reason))

    if not rebuild:
        for field in fields:
            if field.name in matched:
                continue
            if field.is_primary_key:
                rebuild = True
                rebuild_reason = rebuild_reason or f"{table_name}: new primary key {field.name} missing, need to rebuild database."
            else:
                steps.append(add_column(field))

    if rebuild:
        plan = [
            drop_table_if_exists(rebuild_reason),
            create_table(fields, destructive=True, reason=f"{table_name}: recreating table"),
        ]
        # Backfills target the table created just above, which holds no rows yet.
        plan.extend(backfill_default(f) for f in fields if not f.is_primary_key)
        return plan, True

    return steps, False


def quote_ident(name: str) -> str:
    return f"`{name}`"


def render_create_table(table_name: str, fields: Iterable[FieldSpec]) -> str:
    fields = tuple(fields)
    columns = "".join(f"{quote_ident(f.name)} {f.scalar_type.write_type}, " for f in fields)
    keys = ",".join(f.name for f in fields if f.is_primary_key)
    return f"CREATE TABLE {quote_ident(table_name)} ( {columns}PRIMARY KEY ({keys}) );"


def render_step(table_name: str, step: MigrationStep) -> str:
    table = quote_ident(table_name)
    if step.kind == ADD_COLUMN:
        return f"ALTER TABLE {table} ADD {quote_ident(step.field.name)} {step.field.scalar_type.write_type};"
    if step.kind == DROP_COLUMN:
        return f"ALTER TABLE {table} DROP {quote_ident(step.column)};"
    if step.kind == MODIFY_COLUMN:
        return f"ALTER TABLE {table} MODIFY {quote_ident(step.field.name)} {step.field.scalar_type.write_type};"
    if step.kind == DROP_TABLE:
        return f"DROP TABLE IF EXISTS {table};"
    if step.kind == CREATE_TABLE:
        return render_create_table(table_name, step.fields)
    if step.kind == BACKFILL_DEFAULT:
        name = step.field.name
        return f"UPDATE {table} SET {name} = {step.field.default_literal} WHERE {name} IS NULL;"
    raise ValueError(f"Unsupported migration step: {step.kind}")


def render_plan(table_name: str, plan: Iterable[MigrationStep]) -> list[str]:
    return [render_step(table_name, step) for step in plan]
