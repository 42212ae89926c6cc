"""
Name conflict resolution for the PostgreSQL target
==================================================

DB2 keeps constraint and index names per table (or in their own index schema);
PostgreSQL puts tables, sequences, indexes and the indexes behind PRIMARY KEY
and UNIQUE constraints in one namespace per schema. Two DB2 objects with the
same name would then collide, so every such name is handed out by a
NameResolver, which remembers what it already gave away.

Resolution of a desired name, all names lower-cased first:
  1. the name itself
  2. <name>_<kind>
  3. <name>1, <name>2, ... (first free one)
"""

from __future__ import annotations

import logging
from typing import Dict, List, NamedTuple, Optional

from db2_catalog import Catalog
from db2_to_pg_transforms import normalize_identifier

log = logging.getLogger("db2_to_pg_migrator")


class Rename(NamedTuple):
    schema: str
    kind: str
    original: str
    chosen: str


class NameResolver:
    """Hands out unique names within each schema of a catalog.

    The outcome depends on the order of the resolve() calls; PgDdlEmitter
    always asks in the same order.
    """

    def __init__(self, catalog: Optional[Catalog] = None):
        self.catalog = catalog
        # normalized schema name -> chosen name -> object kind
        self.registry: Dict[str, Dict[str, str]] = {}
        self.renames: List[Rename] = []
        self._seeded = catalog is None

    def _seed(self) -> None:
        # Tables keep their names: everything else has to go around them
        self._seeded = True
        for schema, table in self.catalog.iter_tables():
            self.register(schema.name, table.name, "table")

    def _names(self, schema: str) -> Dict[str, str]:
        if not self._seeded:
            self._seed()
        return self.registry.setdefault(normalize_identifier(schema), {})

    def is_taken(self, schema: str, name: str) -> bool:
        return normalize_identifier(name) in self._names(schema)

    def register(self, schema: str, name: str, kind: str) -> str:
        name = normalize_identifier(name)
        self._names(schema)[name] = kind
        return name

    def resolve(self, schema: str, desired: str, kind: str) -> str:
        """Return a name for a `kind` object, free in `schema`, as close as possible to `desired`."""
        names = self._names(schema)
        wanted = normalize_identifier(desired)
        candidate = wanted
        if candidate in names:
            candidate = f"{wanted}_{kind.lower()}"
            n = 1
            while candidate in names:
                candidate = f"{wanted}{n}"
                n += 1
            log.warning("There is a naming conflict in schema %s for %s %s. It has been renamed to %s",
                        schema, kind, wanted, candidate)
            self.renames.append(Rename(schema, kind, wanted, candidate))
        names[candidate] = kind
        return candidate
