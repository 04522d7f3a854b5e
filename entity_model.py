"""Declared entity schema: scalar types, fields, sub-maps and the YAML declaration builder."""

from __future__ import annotations

import dataclasses
import math
from pathlib import Path
from typing import Any, Callable, Iterator

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc


DATABASE_IDS = ("world", "auth", "characters")

MAP_KEY_COLUMN = "map_key"
MAP_VALUE_COLUMN = "map_value"


class SchemaValidationError(ValueError):
    pass


def decode_string(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8")
    return "" if raw is None else str(raw)


def decode_int(raw: Any) -> int:
    return 0 if raw is None else int(raw)


def decode_float(raw: Any) -> float:
    return 0.0 if raw is None else float(raw)


def escape_string(value: str, quote: str = '"') -> str:
    return value.replace("\\", "\\\\").replace(quote, "\\" + quote)


@dataclasses.dataclass(frozen=True)
class ScalarType:
    name: str
    read_type: str
    write_type: str
    decoder: Callable[[Any], Any]
    low: int | None = None
    high: int | None = None

    @property
    def is_string(self) -> bool:
        return self.name == "string"

    def literal(self, value: Any) -> str:
        """Render ``value`` as a SQL literal: strings double-quoted, numbers bare."""
        if self.is_string:
            if not isinstance(value, str):
                raise ValueError(f"{self.name} expects str, got {type(value).__name__}: {value!r}")
            return f'"{escape_string(value)}"'
        if isinstance(value, bool):
            raise ValueError(f"{self.name} does not accept bool: {value!r}")
        if self.decoder is decode_float:
            if not isinstance(value, (int, float)):
                raise ValueError(f"{self.name} expects a number, got {type(value).__name__}: {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{self.name} value must be finite: {value!r}")
            return repr(float(value))
        if not isinstance(value, int):
            raise ValueError(f"{self.name} expects int, got {type(value).__name__}: {value!r}")
        if (self.low is not None and value < self.low) or (self.high is not None and value > self.high):
            raise ValueError(f"{self.name} value out of range [{self.low}, {self.high}]: {value}")
        return str(value)

    def zero(self) -> Any:
        return self.decoder(None)


def _int_type(name: str, read_type: str, write_type: str, bits: int, signed: bool) -> ScalarType:
    if signed:
        low, high = -(2 ** (bits - 1)), 2 ** (bits - 1) - 1
    else:
        low, high = 0, 2**bits - 1
    return ScalarType(name, read_type, write_type, decode_int, low, high)


SCALAR_TYPES: dict[str, ScalarType] = {
    "string": ScalarType("string", "TEXT", "TEXT", decode_string),
    "int8": _int_type("int8", "TINYINT(4)", "TINYINT", 8, True),
    "int16": _int_type("int16", "SMALLINT(6)", "SMALLINT", 16, True),
    "int32": _int_type("int32", "INT(11)", "INT", 32, True),
    "int64": _int_type("int64", "BIGINT(20)", "BIGINT", 64, True),
    "uint8": _int_type("uint8", "TINYINT(3) UNSIGNED", "TINYINT UNSIGNED", 8, False),
    "uint16": _int_type("uint16", "SMALLINT(5) UNSIGNED", "SMALLINT UNSIGNED", 16, False),
    "uint32": _int_type("uint32", "INT(10) UNSIGNED", "INT UNSIGNED", 32, False),
    "uint64": _int_type("uint64", "BIGINT(20) UNSIGNED", "BIGINT UNSIGNED", 64, False),
    "float": ScalarType("float", "FLOAT", "FLOAT", decode_float),
    "double": ScalarType("double", "DOUBLE", "DOUBLE", decode_float),
    # Alias of int32; keeps its own name for messages.
    "int": _int_type("int", "INT(11)", "INT", 32, True),
}


def scalar_type(name: str) -> ScalarType:
    try:
        return SCALAR_TYPES[name]
    except KeyError:
        raise ValueError(f"Unsupported scalar type: {name}") from None


@dataclasses.dataclass(frozen=True)
class FieldSpec:
    name: str
    scalar_type: ScalarType
    is_primary_key: bool
    default: Any

    @property
    def default_literal(self) -> str:
        return self.scalar_type.literal(self.default)


@dataclasses.dataclass(frozen=True)
class MapFieldSpec:
    name: str
    key_type: ScalarType
    value_type: ScalarType
    owner_name: str
    owner_keys: tuple[FieldSpec, ...]

    @property
    def table_name(self) -> str:
        return f"{self.owner_name.lower()}_{self.name.lower()}"

    @property
    def fields(self) -> tuple[FieldSpec, ...]:
        """Owner primary keys, then ``map_key`` (primary key) and ``map_value``."""
        value_default = "" if self.value_type.is_string else self.value_type.zero()
        return self.owner_keys + (
            FieldSpec(MAP_KEY_COLUMN, self.key_type, True, self.key_type.zero()),
            FieldSpec(MAP_VALUE_COLUMN, self.value_type, False, value_default),
        )


@dataclasses.dataclass(frozen=True)
class EntityModel:
    name: str
    database_id: str
    fields: tuple[FieldSpec, ...]
    maps: tuple[MapFieldSpec, ...] = ()

    @property
    def table_name(self) -> str:
        return self.name.lower()

    @property
    def primary_keys(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.is_primary_key)

    def field(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field {name!r}")


@dataclasses.dataclass(frozen=True)
class TableSchema:
    table_name: str
    database_id: str
    fields: tuple[FieldSpec, ...]


class SchemaRegistry:
    """Declared entities in declaration order."""

    def __init__(self, entities: list[EntityModel] | tuple[EntityModel, ...] = ()) -> None:
        self._entities: dict[str, EntityModel] = {}
        for entity in entities:
            if entity.name in self._entities:
                raise SchemaValidationError(f"Duplicate entity: {entity.name}")
            self._entities[entity.name] = entity

    def __iter__(self) -> Iterator[EntityModel]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def __getitem__(self, name: str) -> EntityModel:
        return self._entities[name]

    def tables(self) -> list[TableSchema]:
        out: list[TableSchema] = []
        for entity in self._entities.values():
            out.append(TableSchema(entity.table_name, entity.database_id, entity.fields))
            for map_spec in entity.maps:
                out.append(TableSchema(map_spec.table_name, entity.database_id, map_spec.fields))
        return out


def coerce_default(entity: str, field: str, stype: ScalarType, raw: Any) -> Any:
    if raw is None:
        raise SchemaValidationError(f"{entity}.{field}: database fields must declare a default")
    if stype.is_string:
        return str(raw)
    fractional = isinstance(raw, float) and stype.decoder is not decode_float and not raw.is_integer()
    if isinstance(raw, bool) or fractional:
        raise SchemaValidationError(f"{entity}.{field}: invalid default {raw!r} for {stype.name}")
    try:
        value = float(raw) if stype.decoder is decode_float else int(raw)
        stype.literal(value)
    except (TypeError, ValueError) as exc:
        raise SchemaValidationError(f"{entity}.{field}: invalid default {raw!r} for {stype.name}: {exc}") from None
    return value


def parse_field(entity: str, raw: dict) -> FieldSpec:
    name = raw.get("name")
    if not name:
        raise SchemaValidationError(f"{entity}: field without a name")
    type_name = raw.get("type")
    if type_name not in SCALAR_TYPES:
        raise SchemaValidationError(f"{entity}.{name}: invalid type for database field: {type_name}")
    stype = SCALAR_TYPES[type_name]
    is_pk = bool(raw.get("primary_key", False))
    if is_pk and stype.is_string:
        raise SchemaValidationError(f"{entity}.{name}: strings cannot be primary keys")
    return FieldSpec(name=name, scalar_type=stype, is_primary_key=is_pk, default=coerce_default(entity, name, stype, raw.get("default")))


def parse_entity(raw: dict) -> EntityModel:
    name = raw.get("name")
    if not name:
        raise SchemaValidationError("entity without a name")
    database_id = raw.get("database")
    if database_id not in DATABASE_IDS:
        raise SchemaValidationError(f"{name}: unknown database {database_id!r}, expected one of {list(DATABASE_IDS)}")

    fields: list[FieldSpec] = []
    seen: set[str] = set()
    for raw_field in raw.get("fields", []) or []:
        f = parse_field(name, raw_field)
        if f.name in seen:
            raise SchemaValidationError(f"{name}.{f.name}: duplicate field")
        seen.add(f.name)
        fields.append(f)

    owner_keys = tuple(f for f in fields if f.is_primary_key)
    if not owner_keys:
        raise SchemaValidationError(f"{name}: database rows must have at least one primary key")

    maps: list[MapFieldSpec] = []
    for raw_map in raw.get("maps", []) or []:
        map_name = raw_map.get("name")
        if not map_name:
            raise SchemaValidationError(f"{name}: map without a name")
        if map_name in seen:
            raise SchemaValidationError(f"{name}.{map_name}: duplicate field")
        seen.add(map_name)
        for role in ("key", "value"):
            if raw_map.get(role) not in SCALAR_TYPES:
                raise SchemaValidationError(f"{name}.{map_name}: invalid {role} type for database map: {raw_map.get(role)}")
        # map_key is part of the subordinate table's primary key.
        if SCALAR_TYPES[raw_map["key"]].is_string:
            raise SchemaValidationError(f"{name}.{map_name}: strings cannot be primary keys (map key)")
        maps.append(
            MapFieldSpec(
                name=map_name,
                key_type=SCALAR_TYPES[raw_map["key"]],
                value_type=SCALAR_TYPES[raw_map["value"]],
                owner_name=name,
                owner_keys=owner_keys,
            )
        )

    return EntityModel(name=name, database_id=database_id, fields=tuple(fields), maps=tuple(maps))


def parse_declarations(data: dict) -> SchemaRegistry:
    entities = [parse_entity(raw) for raw in (data or {}).get("entities", []) or []]
    return SchemaRegistry(entities)


def load_declarations(path: Path) -> SchemaRegistry:
    return parse_declarations(yaml.safe_load(path.read_text(encoding="utf-8")))
