"""In-memory stand-in for a logical database, understanding the generated statement formats."""

from __future__ import annotations

import re

from entity_model import EntityModel

LITERAL_RE = re.compile(r'"(?:\\.|[^"\\])*"|[^\s,]+')
CONDITION_RE = re.compile(r'`(\w+)` = ("(?:\\.|[^"\\])*"|[^\s;]+)')


def parse_literal(token: str):
    if token.startswith('"'):
        return re.sub(r"\\(.)", r"\1", token[1:-1])
    if any(ch in token for ch in ".eEn"):
        return float(token)
    return int(token)


class FakeDatabase:
    def __init__(self, schema_name: str = "characters") -> None:
        self.schema_name = schema_name
        self.tables: dict[str, dict] = {}
        self.catalog: dict[str, list[tuple]] = {}
        self.statements: list[str] = []
        self.queries: list[str] = []
        self.fail_on: str | None = None

    def create_table(self, name: str, columns: list[str], keys: list[str]) -> None:
        self.tables[name] = {"columns": columns, "keys": keys, "rows": {}}

    def create_model_tables(self, model: EntityModel) -> None:
        self.create_table(
            model.table_name,
            [f.name for f in model.fields],
            [f.name for f in model.primary_keys],
        )
        for spec in model.maps:
            self.create_table(
                spec.table_name,
                [f.name for f in spec.fields],
                [f.name for f in spec.fields if f.is_primary_key],
            )

    def rows(self, name: str) -> list[tuple]:
        return list(self.tables[name]["rows"].values())

    def _matching(self, table: dict, predicate: str) -> list[tuple]:
        conditions = [(table["columns"].index(col), parse_literal(val)) for col, val in CONDITION_RE.findall(predicate)]
        return [
            key
            for key, row in table["rows"].items()
            if all(row[idx] == value for idx, value in conditions)
        ]

    def query(self, sql: str) -> list[tuple]:
        self.queries.append(sql)
        if "information_schema" in sql:
            m = re.search(r"`TABLE_NAME` = '([^']*)'", sql)
            return list(self.catalog.get(m.group(1), []))
        m = re.match(r"SELECT \* FROM `(\w+)` WHERE (.*);$", sql, flags=re.S)
        if not m:
            raise RuntimeError(f"unsupported query: {sql}")
        table = self.tables[m.group(1)]
        return [table["rows"][key] for key in self._matching(table, m.group(2))]

    def execute(self, sql: str) -> None:
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError(f"statement failed: {sql}")
        self.statements.append(sql)

        m = re.match(r"INSERT INTO `(\w+)` VALUES \( (.*) \) ON DUPLICATE KEY UPDATE", sql, flags=re.S)
        if m:
            table = self.tables[m.group(1)]
            values = tuple(parse_literal(tok) for tok in LITERAL_RE.findall(m.group(2)))
            key = tuple(values[table["columns"].index(k)] for k in table["keys"])
            table["rows"][key] = values
            return

        m = re.match(r"DELETE FROM `(\w+)` WHERE (.*);$", sql, flags=re.S)
        if m:
            table = self.tables[m.group(1)]
            for key in self._matching(table, m.group(2)):
                del table["rows"][key]
