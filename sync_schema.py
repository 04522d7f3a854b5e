#!/usr/bin/env python3
"""Reconcile live tables with declared entities, one table at a time.

Usage:
    python sync_schema.py [--declarations entities.yaml] [--config databases.yaml]
                          [--dry-run] [--check] [--out-sql FILE] [--out-md FILE]
"""

from __future__ import annotations

import argparse
import dataclasses
import sys
from collections import Counter, defaultdict
from pathlib import Path

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc

import sqlalchemy.exc

from catalog import Database, fetch_columns, open_databases
from confirmation import ConfirmationGate
from entity_model import DATABASE_IDS, SchemaRegistry, SchemaValidationError, TableSchema, load_declarations
from schema_differ import MigrationStep, reconcile, render_plan, render_step


@dataclasses.dataclass
class TablePlan:
    table: str
    database_id: str
    steps: list[MigrationStep]
    rebuild: bool
    statements: list[str] = dataclasses.field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.steps)


def database_for(databases: dict[str, Database], schema: TableSchema) -> Database:
    db = databases.get(schema.database_id)
    if db is None:
        raise ValueError(f"No connection configured for logical database '{schema.database_id}' (table {schema.table_name})")
    return db


def sync_table(schema: TableSchema, db: Database, gate: ConfirmationGate | None, apply: bool) -> TablePlan:
    observed = fetch_columns(db, schema.table_name)
    steps, rebuild = reconcile(schema.table_name, schema.fields, observed)
    plan = TablePlan(table=schema.table_name, database_id=schema.database_id, steps=steps, rebuild=rebuild)
    if gate is None:
        return plan

    for step in steps:
        if step.destructive:
            gate.confirm(step.reason)
        statement = render_step(schema.table_name, step)
        plan.statements.append(statement)
        if apply:
            db.execute(statement)
    return plan


def sync_tables(
    registry: SchemaRegistry,
    databases: dict[str, Database],
    gate: ConfirmationGate | None,
    apply: bool = True,
    verbose: bool = False,
) -> list[TablePlan]:
    """Plan every declared table in order; with a gate, render (and with ``apply``, execute) each plan.

    A table is fully handled before the next one's catalog is read. Execution
    errors propagate and stop the run.
    """
    tables = registry.tables()
    plans: list[TablePlan] = []
    for i, schema in enumerate(tables, 1):
        if verbose:
            print(f"  {schema.database_id}: [{i}/{len(tables)}] {schema.table_name}", flush=True)
        plans.append(sync_table(schema, database_for(databases, schema), gate, apply))
    return plans


def db_sort_key(db: str) -> tuple[int, str]:
    try:
        return (DATABASE_IDS.index(db), db)
    except ValueError:
        return (len(DATABASE_IDS), db)


def render_sql(plans: list[TablePlan]) -> str:
    """Group rendered statements by database; plans built without a gate are rendered from their steps."""
    grouped: dict[str, list[tuple[TablePlan, list[str]]]] = defaultdict(list)
    for plan in plans:
        statements = plan.statements or render_plan(plan.table, plan.steps)
        if statements:
            grouped[plan.database_id].append((plan, statements))

    lines: list[str] = []
    for db in sorted(grouped, key=db_sort_key):
        lines.append(f"-- {db} database")
        for plan, statements in grouped[db]:
            lines.append("")
            lines.append(f"-- {plan.table}{' (rebuild)' if plan.rebuild else ''}")
            lines.extend(statements)
        lines.append("")
    if not lines:
        lines.append("-- no changes")
        lines.append("")
    return "\n".join(lines)


def render_markdown(plans: list[TablePlan]) -> str:
    lines: list[str] = []
    lines.append("# Schema sync plan")
    lines.append("")

    drifted = [p for p in plans if p.has_drift]
    destructive = sum(1 for p in plans for s in p.steps if s.destructive)
    lines.append(f"- **{len(plans)} tables checked**, {len(drifted)} with changes")
    lines.append(f"- **{destructive} destructive steps**")
    lines.append(f"- **{sum(1 for p in plans if p.rebuild)} rebuilds**")
    lines.append("")

    if not drifted:
        lines.append("All tables match their declarations.")
        lines.append("")
        return "\n".join(lines)

    lines.append("| Database | Table | Steps | Destructive | Rebuild |")
    lines.append("|----------|-------|-------|-------------|---------|")
    for plan in sorted(drifted, key=lambda p: (db_sort_key(p.database_id), p.table)):
        kinds = Counter(step.kind for step in plan.steps)
        summary = ", ".join(f"{kind} x{count}" for kind, count in sorted(kinds.items()))
        n_destructive = sum(1 for s in plan.steps if s.destructive)
        lines.append(
            f"| `{plan.database_id}` | `{plan.table}` | {summary} | {n_destructive} | {'yes' if plan.rebuild else 'no'} |"
        )
    lines.append("")

    notices = [s.reason for p in drifted for s in p.steps if s.destructive and s.reason]
    if notices:
        lines.append("## Destructive operations")
        lines.append("")
        for notice in notices:
            lines.append(f"- {notice}")
        lines.append("")
    return "\n".join(lines)


def load_config(path: Path) -> dict:
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile database tables with declared entities")
    parser.add_argument("--declarations", default="entities.yaml", help="Entity declarations (YAML)")
    parser.add_argument("--config", default="databases.yaml", help="Connection config (YAML)")
    for db_id in DATABASE_IDS:
        parser.add_argument(f"--url-{db_id}", default=None, help=f"SQLAlchemy URL for the {db_id} database")
    parser.add_argument("--dry-run", action="store_true", help="Render the plan without executing it")
    parser.add_argument("--check", action="store_true", help="Exit 1 when any table drifted; executes nothing")
    parser.add_argument("--out-sql", default=None, help="Write rendered statements to this file")
    parser.add_argument("--out-md", default=None, help="Write a markdown summary to this file")
    parser.add_argument("--quiet", action="store_true", help="Suppress per-table progress")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    overrides = {db_id: getattr(args, f"url_{db_id}") for db_id in DATABASE_IDS if getattr(args, f"url_{db_id}")}

    try:
        registry = load_declarations(Path(args.declarations))
        databases = open_databases(load_config(Path(args.config)), overrides)
        gate = None if args.check else ConfirmationGate()
        plans = sync_tables(registry, databases, gate, apply=not (args.dry_run or args.check), verbose=not args.quiet)
    except SchemaValidationError as exc:
        print(f"[schema] {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    except sqlalchemy.exc.SQLAlchemyError as exc:
        print(f"[error] statement failed: {exc}", file=sys.stderr)
        return 1

    if args.out_sql:
        write_text(Path(args.out_sql), render_sql(plans))
        print(f"Generated {args.out_sql}")
    if args.out_md:
        write_text(Path(args.out_md), render_markdown(plans))
        print(f"Generated {args.out_md}")

    if args.check:
        drifted = [p for p in plans if p.has_drift]
        for plan in drifted:
            print(f"[check] drift detected: {plan.database_id}.{plan.table}", file=sys.stderr)
        return 1 if drifted else 0

    changed = sum(1 for p in plans if p.has_drift)
    print(f"\nTotal: {len(plans)} tables checked, {changed} changed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
