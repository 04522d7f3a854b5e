import unittest
from pathlib import Path

from entity_model import (
    SCALAR_TYPES,
    SchemaValidationError,
    load_declarations,
    parse_declarations,
    scalar_type,
)


REPO_ROOT = Path(__file__).resolve().parents[1]
DECLARATIONS_PATH = REPO_ROOT / "entities.yaml"


def player_declaration(**overrides) -> dict:
    entity = {
        "name": "Player",
        "database": "characters",
        "fields": [
            {"name": "id", "type": "uint32", "primary_key": True, "default": 0},
            {"name": "name", "type": "string", "default": ""},
            {"name": "gold", "type": "uint32", "default": 0},
        ],
        "maps": [{"name": "Items", "key": "uint32", "value": "string"}],
    }
    entity.update(overrides)
    return {"entities": [entity]}


class TestScalarTypes(unittest.TestCase):
    def test_read_and_write_renderings(self) -> None:
        expected = {
            "int": ("INT(11)", "INT"),
            "int32": ("INT(11)", "INT"),
            "int8": ("TINYINT(4)", "TINYINT"),
            "int16": ("SMALLINT(6)", "SMALLINT"),
            "int64": ("BIGINT(20)", "BIGINT"),
            "uint8": ("TINYINT(3) UNSIGNED", "TINYINT UNSIGNED"),
            "uint16": ("SMALLINT(5) UNSIGNED", "SMALLINT UNSIGNED"),
            "uint32": ("INT(10) UNSIGNED", "INT UNSIGNED"),
            "uint64": ("BIGINT(20) UNSIGNED", "BIGINT UNSIGNED"),
            "float": ("FLOAT", "FLOAT"),
            "double": ("DOUBLE", "DOUBLE"),
            "string": ("TEXT", "TEXT"),
        }
        self.assertEqual(set(SCALAR_TYPES), set(expected))
        for name, (read_type, write_type) in expected.items():
            self.assertEqual(SCALAR_TYPES[name].read_type, read_type, name)
            self.assertEqual(SCALAR_TYPES[name].write_type, write_type, name)

    def test_string_literal_is_escaped_and_double_quoted(self) -> None:
        self.assertEqual(scalar_type("string").literal('say "hi" \\o/'), '"say \\"hi\\" \\\\o/"')

    def test_numeric_literals_are_bare(self) -> None:
        self.assertEqual(scalar_type("uint32").literal(42), "42")
        self.assertEqual(scalar_type("int8").literal(-128), "-128")
        self.assertEqual(scalar_type("double").literal(1.5), "1.5")
        self.assertEqual(scalar_type("float").literal(2), "2.0")

    def test_literal_rejects_out_of_range_and_wrong_types(self) -> None:
        with self.assertRaises(ValueError):
            scalar_type("uint8").literal(256)
        with self.assertRaises(ValueError):
            scalar_type("uint32").literal(-1)
        with self.assertRaises(ValueError):
            scalar_type("int32").literal("7")
        with self.assertRaises(ValueError):
            scalar_type("int32").literal(True)
        with self.assertRaises(ValueError):
            scalar_type("string").literal(7)
        with self.assertRaises(ValueError):
            scalar_type("double").literal(float("inf"))
        with self.assertRaises(ValueError):
            scalar_type("float").literal(float("nan"))

    def test_decoders(self) -> None:
        self.assertEqual(scalar_type("string").decoder(b"abc"), "abc")
        self.assertEqual(scalar_type("uint64").decoder("18446744073709551615"), 2**64 - 1)
        self.assertEqual(scalar_type("double").decoder("0.25"), 0.25)

    def test_unknown_scalar_type(self) -> None:
        with self.assertRaises(ValueError):
            scalar_type("varchar")


class TestParseDeclarations(unittest.TestCase):
    def test_builds_entity_and_map_tables(self) -> None:
        registry = parse_declarations(player_declaration())
        player = registry["Player"]

        self.assertEqual(player.table_name, "player")
        self.assertEqual(player.database_id, "characters")
        self.assertEqual([f.name for f in player.fields], ["id", "name", "gold"])
        self.assertEqual([f.name for f in player.primary_keys], ["id"])
        self.assertEqual(player.field("name").default_literal, '""')

        items = player.maps[0]
        self.assertEqual(items.table_name, "player_items")
        self.assertEqual([f.name for f in items.fields], ["id", "map_key", "map_value"])
        self.assertEqual([f.is_primary_key for f in items.fields], [True, True, False])
        self.assertEqual(items.fields[2].default_literal, '""')

    def test_tables_follow_declaration_order(self) -> None:
        data = player_declaration()
        data["entities"].append(
            {
                "name": "Realm",
                "database": "auth",
                "fields": [{"name": "id", "type": "uint8", "primary_key": True, "default": 0}],
            }
        )
        tables = parse_declarations(data).tables()
        self.assertEqual([t.table_name for t in tables], ["player", "player_items", "realm"])
        self.assertEqual([t.database_id for t in tables], ["characters", "characters", "auth"])

    def test_numeric_map_value_defaults_to_zero(self) -> None:
        data = player_declaration(maps=[{"name": "items", "key": "uint32", "value": "uint16"}])
        value = parse_declarations(data)["Player"].maps[0].fields[-1]
        self.assertEqual(value.default_literal, "0")

    def test_rejects_entity_without_primary_key(self) -> None:
        data = player_declaration(fields=[{"name": "name", "type": "string", "default": ""}])
        with self.assertRaisesRegex(SchemaValidationError, "Player: database rows must have at least one primary key"):
            parse_declarations(data)

    def test_rejects_string_primary_key(self) -> None:
        data = player_declaration(fields=[{"name": "id", "type": "string", "primary_key": True, "default": ""}])
        with self.assertRaisesRegex(SchemaValidationError, "Player.id: strings cannot be primary keys"):
            parse_declarations(data)

    def test_rejects_unsupported_type(self) -> None:
        data = player_declaration(
            fields=[
                {"name": "id", "type": "uint32", "primary_key": True, "default": 0},
                {"name": "when", "type": "datetime", "default": 0},
            ]
        )
        with self.assertRaisesRegex(SchemaValidationError, "Player.when: invalid type"):
            parse_declarations(data)

    def test_rejects_missing_default(self) -> None:
        data = player_declaration(fields=[{"name": "id", "type": "uint32", "primary_key": True}])
        with self.assertRaisesRegex(SchemaValidationError, "Player.id: database fields must declare a default"):
            parse_declarations(data)

    def test_rejects_default_out_of_range(self) -> None:
        data = player_declaration(fields=[{"name": "id", "type": "uint8", "primary_key": True, "default": 300}])
        with self.assertRaisesRegex(SchemaValidationError, "Player.id: invalid default"):
            parse_declarations(data)

    def test_rejects_fractional_and_bool_defaults(self) -> None:
        for default in (1.7, True):
            data = player_declaration(
                fields=[
                    {"name": "id", "type": "uint32", "primary_key": True, "default": 0},
                    {"name": "level", "type": "uint32", "default": default},
                ]
            )
            with self.assertRaisesRegex(SchemaValidationError, "Player.level: invalid default"):
                parse_declarations(data)

    def test_accepts_whole_float_default_for_integer(self) -> None:
        data = player_declaration(
            fields=[
                {"name": "id", "type": "uint32", "primary_key": True, "default": 0},
                {"name": "level", "type": "uint32", "default": 2.0},
            ]
        )
        self.assertEqual(parse_declarations(data)["Player"].field("level").default, 2)

    def test_rejects_duplicate_field(self) -> None:
        data = player_declaration(
            fields=[
                {"name": "id", "type": "uint32", "primary_key": True, "default": 0},
                {"name": "id", "type": "uint32", "default": 0},
            ]
        )
        with self.assertRaisesRegex(SchemaValidationError, "duplicate field"):
            parse_declarations(data)

    def test_rejects_unknown_database(self) -> None:
        with self.assertRaisesRegex(SchemaValidationError, "unknown database"):
            parse_declarations(player_declaration(database="logs"))

    def test_rejects_string_map_key_and_bad_map_types(self) -> None:
        with self.assertRaisesRegex(SchemaValidationError, "map key"):
            parse_declarations(player_declaration(maps=[{"name": "tags", "key": "string", "value": "uint8"}]))
        with self.assertRaisesRegex(SchemaValidationError, "invalid value type"):
            parse_declarations(player_declaration(maps=[{"name": "tags", "key": "uint8", "value": "blob"}]))

    def test_no_partial_registry_on_error(self) -> None:
        data = player_declaration()
        data["entities"].append({"name": "Broken", "database": "world", "fields": []})
        registry = None
        with self.assertRaises(SchemaValidationError):
            registry = parse_declarations(data)
        self.assertIsNone(registry)

    def test_loads_repository_declarations(self) -> None:
        registry = load_declarations(DECLARATIONS_PATH)
        self.assertEqual([e.name for e in registry], ["Player", "AccountFlags", "CreatureLoot"])
        self.assertEqual(
            [t.table_name for t in registry.tables()],
            ["player", "player_items", "player_notes", "accountflags", "creatureloot"],
        )
        self.assertEqual(registry["AccountFlags"].field("rating").default, 1500.0)


if __name__ == "__main__":
    unittest.main()
