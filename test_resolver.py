"""
Tests for the name conflict resolver in pg_name_resolver.py.
Run with:  python -m pytest test_resolver.py -v
"""

import logging

import pg_name_resolver as mod
from db2_catalog import Catalog, Table


def _catalog_with_tables(*names):
    catalog = Catalog()
    for qualified in names:
        schema, table = qualified.split(".")
        catalog.schema(schema).tables[table] = Table(name=table)
    return catalog


class TestResolve:
    def test_free_name_unchanged(self):
        resolver = mod.NameResolver(Catalog())
        assert resolver.resolve("S", "IX_A", "index") == "ix_a"
        assert resolver.renames == []

    def test_same_name_twice_is_renamed(self, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        resolver = mod.NameResolver(Catalog())
        first = resolver.resolve("S", "DUP", "unique")
        second = resolver.resolve("S", "DUP", "index")
        assert first == "dup"
        assert second == "dup_index"
        assert resolver.renames == [mod.Rename("S", "index", "dup", "dup_index")]
        assert any("dup_index" in r.getMessage() for r in caplog.records)

    def test_numeric_suffix(self):
        resolver = mod.NameResolver(Catalog())
        names = [resolver.resolve("S", "X", "index") for _ in range(4)]
        assert names == ["x", "x_index", "x1", "x2"]
        assert len(resolver.renames) == 3

    def test_tables_are_seeded(self):
        resolver = mod.NameResolver(_catalog_with_tables("APP.ORDERS"))
        assert resolver.resolve("APP", "ORDERS", "pk") == "orders_pk"

    def test_schemas_are_separate(self):
        resolver = mod.NameResolver(_catalog_with_tables("A.T"))
        assert resolver.resolve("B", "T", "index") == "t"

    def test_names_compared_lower_case(self):
        resolver = mod.NameResolver(Catalog())
        resolver.resolve("S", "Name", "sequence")
        assert resolver.resolve("S", "NAME", "sequence") == "name_sequence"

    def test_deterministic(self):
        requests = [("S", "A", "pk"), ("S", "A", "index"), ("S", "B", "index"), ("S", "A", "sequence")]
        results = []
        for _ in range(2):
            resolver = mod.NameResolver(_catalog_with_tables("S.B"))
            results.append([resolver.resolve(*r) for r in requests])
        assert results[0] == results[1] == ["a", "a_index", "b_index", "a_sequence"]

    def test_is_taken(self):
        resolver = mod.NameResolver(_catalog_with_tables("S.T"))
        assert resolver.is_taken("S", "T")
        assert not resolver.is_taken("S", "U")
