"""Row mapping for declared entities: load, upsert and delete, with sub-map delta flushing."""

from __future__ import annotations

from typing import Any, Iterator

from catalog import Database
from entity_model import MAP_KEY_COLUMN, MAP_VALUE_COLUMN, EntityModel, MapFieldSpec
from schema_differ import quote_ident


class TrackedMap:
    """Key/value map remembering which keys were set or erased since the last flush.

    A key is never both dirty and erased: setting a key cancels a pending erase
    and erasing cancels a pending write, so the most recent operation wins.
    """

    def __init__(self, spec: MapFieldSpec) -> None:
        self.spec = spec
        self._values: dict[Any, Any] = {}
        # dicts used as insertion-ordered sets so flushes are deterministic
        self._dirty: dict[Any, None] = {}
        self._erased: dict[Any, None] = {}

    def _check(self, key: Any, value: Any = None, check_value: bool = True) -> None:
        self.spec.key_type.literal(key)
        if check_value:
            self.spec.value_type.literal(value)

    def set(self, key: Any, value: Any) -> None:
        self._check(key, value)
        self._values[key] = value
        self._dirty[key] = None
        self._erased.pop(key, None)

    def set_silent(self, key: Any, value: Any) -> None:
        self._values[key] = value

    def erase(self, key: Any) -> None:
        self._check(key, check_value=False)
        self._values.pop(key, None)
        self._erased[key] = None
        self._dirty.pop(key, None)

    def get(self, key: Any, default: Any = None) -> Any:
        return self._values.get(key, default)

    def items(self):
        return self._values.items()

    def clear_deltas(self) -> None:
        self._dirty.clear()
        self._erased.clear()

    @property
    def dirty_keys(self) -> set:
        return set(self._dirty)

    @property
    def erased_keys(self) -> set:
        return set(self._erased)

    def pending_writes(self) -> list[tuple[Any, Any]]:
        return [(key, self._values[key]) for key in self._dirty]

    def pending_erases(self) -> list[Any]:
        return list(self._erased)

    @property
    def is_clean(self) -> bool:
        return not self._dirty and not self._erased

    def __getitem__(self, key: Any) -> Any:
        return self._values[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: Any) -> None:
        self.erase(key)

    def __contains__(self, key: Any) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TrackedMap):
            return self._values == other._values
        if isinstance(other, dict):
            return self._values == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"TrackedMap({self._values!r}, dirty={list(self._dirty)!r}, erased={list(self._erased)!r})"


class Entity:
    def __init__(self, model: EntityModel, **values: Any) -> None:
        self.model = model
        self.values: dict[str, Any] = {f.name: f.default for f in model.fields}
        self.maps: dict[str, TrackedMap] = {m.name: TrackedMap(m) for m in model.maps}
        for name, value in values.items():
            self[name] = value

    def __getitem__(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        if name in self.maps:
            return self.maps[name]
        raise KeyError(f"{self.model.name} has no field {name!r}")

    def __setitem__(self, name: str, value: Any) -> None:
        if name in self.maps:
            raise KeyError(f"{self.model.name}.{name} is a map; use set/erase on it")
        self.model.field(name)
        self.values[name] = value

    def __repr__(self) -> str:
        return f"{self.model.name}({self.values!r})"


class PersistenceMapper:
    def __init__(self, model: EntityModel, db: Database) -> None:
        self.model = model
        self.db = db

    @property
    def table(self) -> str:
        return quote_ident(self.model.table_name)

    def new(self, **values: Any) -> Entity:
        return Entity(self.model, **values)

    def primary_key_predicate(self, entity: Entity) -> str:
        return " AND ".join(
            f"{quote_ident(f.name)} = {f.scalar_type.literal(entity.values[f.name])}"
            for f in self.model.primary_keys
        )

    def load_query_text(self, predicate: str) -> str:
        return f"SELECT * FROM {self.table} WHERE {predicate};"

    def entity_load_query_text(self, entity: Entity) -> str:
        return self.load_query_text(self.primary_key_predicate(entity))

    def save_query_text(self, entity: Entity) -> str:
        values = " , ".join(f.scalar_type.literal(entity.values[f.name]) for f in self.model.fields)
        updates = [
            f"{quote_ident(f.name)} = {f.scalar_type.literal(entity.values[f.name])}"
            for f in self.model.fields
            if not f.is_primary_key
        ]
        if not updates:
            # Key-only rows: a self-assignment keeps the statement valid.
            first = quote_ident(self.model.primary_keys[0].name)
            updates = [f"{first} = {first}"]
        return f"INSERT INTO {self.table} VALUES ( {values} ) ON DUPLICATE KEY UPDATE {' , '.join(updates)};"

    def remove_query_text(self, entity: Entity) -> str:
        return f"DELETE FROM {self.table} WHERE {self.primary_key_predicate(entity)};"

    def map_load_query_text(self, entity: Entity, spec: MapFieldSpec) -> str:
        return f"SELECT * FROM {quote_ident(spec.table_name)} WHERE {self.primary_key_predicate(entity)};"

    def map_upsert_text(self, entity: Entity, spec: MapFieldSpec, key: Any, value: Any) -> str:
        owner = [f.scalar_type.literal(entity.values[f.name]) for f in self.model.primary_keys]
        value_literal = spec.value_type.literal(value)
        row = " , ".join(owner + [spec.key_type.literal(key), value_literal])
        return (
            f"INSERT INTO {quote_ident(spec.table_name)} VALUES ( {row} ) "
            f"ON DUPLICATE KEY UPDATE {quote_ident(MAP_VALUE_COLUMN)} = {value_literal};"
        )

    def map_erase_text(self, entity: Entity, spec: MapFieldSpec, key: Any) -> str:
        return (
            f"DELETE FROM {quote_ident(spec.table_name)} WHERE {self.primary_key_predicate(entity)} "
            f"AND {quote_ident(MAP_KEY_COLUMN)} = {spec.key_type.literal(key)};"
        )

    def decode_row(self, row: tuple) -> Entity:
        entity = Entity(self.model)
        for idx, f in enumerate(self.model.fields):
            entity.values[f.name] = f.scalar_type.decoder(row[idx])
        return entity

    def load(self, predicate: str) -> list[Entity]:
        loaded: list[Entity] = []
        key_count = len(self.model.primary_keys)
        for row in self.db.query(self.load_query_text(predicate)):
            entity = self.decode_row(row)
            for spec in self.model.maps:
                tracked = entity.maps[spec.name]
                for map_row in self.db.query(self.map_load_query_text(entity, spec)):
                    tracked.set_silent(
                        spec.key_type.decoder(map_row[key_count]),
                        spec.value_type.decoder(map_row[key_count + 1]),
                    )
            loaded.append(entity)
        return loaded

    def save(self, entity: Entity) -> None:
        self.db.execute(self.save_query_text(entity))
        for spec in self.model.maps:
            tracked = entity.maps[spec.name]
            for key, value in tracked.pending_writes():
                self.db.execute(self.map_upsert_text(entity, spec, key, value))
            for key in tracked.pending_erases():
                self.db.execute(self.map_erase_text(entity, spec, key))
            tracked.clear_deltas()

    def remove(self, entity: Entity) -> None:
        # Subordinate map rows are left in place.
        self.db.execute(self.remove_query_text(entity))
