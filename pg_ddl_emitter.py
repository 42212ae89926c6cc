"""
PostgreSQL DDL emitter
======================

Turns a parsed Catalog into three scripts:

  before.sql   run before loading data: tablespaces, roles, schemas,
               sequences, domains, tables and their comments
  after.sql    run after loading data: primary keys, unique constraints,
               indexes, foreign keys (NOT VALID) and identity sequences
  unsure.sql   best effort, expected to need hand editing: FK validation,
               CHECK constraints, views, functions and triggers

Iteration order is fixed so that the output, and the names handed out by the
NameResolver, are the same from one run to the next: roles, tablespaces,
schemas and every object inside a schema sorted by DB2 name, columns by
position, constraints in declaration order, views in dump order.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Dict, List, NamedTuple, Optional

from db2_catalog import Catalog, Column, ForeignKey, Identity, Index, Schema, Sequence, Table, View
from db2_to_pg_transforms import column_default_sql, pg_identifier, qualified_name, try_fix_expression
from pg_name_resolver import NameResolver

log = logging.getLogger("db2_to_pg_migrator")

CLIENT_ENCODING = "set client_encoding to UTF8;"

# Query part of a view statement: [(columns)] AS <query> [WITH ... CHECK OPTION]
_VIEW_QUERY_PATTERN = re.compile(
    r"^\s*(?:\([^)]*\)\s*)?AS\s+(?P<query>.*?)(?:\s+WITH\s+(?:CASCADED\s+|LOCAL\s+)?CHECK\s+OPTION)?\s*$",
    re.IGNORECASE | re.DOTALL,
)

UNSURE_HEADER = (
    "-- This file probably won't work as is. Try to run it, catch errors, and correct them.\n"
    "-- Views, CHECK constraints, functions and triggers are copied from DB2 with only\n"
    "-- textual fixes applied."
)
FUNCTIONS_BANNER = (
    "-- Under this point are functions. There is NO WAY they will work as is.\n"
    "-- They are only here so that they fail at creation and get corrected by hand."
)
TRIGGERS_BANNER = (
    "-- Under this point are triggers. There is NO WAY they will work as is.\n"
    "-- They are only here so that they fail at creation and get corrected by hand."
)


class DdlScripts(NamedTuple):
    before: str
    after: str
    unsure: str


def probe_postgres_syntax(sql: str) -> Optional[str]:
    """Parse `sql` with sqlglot's PostgreSQL dialect. Returns the parser error, or None if it parses."""
    import sqlglot
    from sqlglot.errors import SqlglotError

    try:
        sqlglot.parse_one(sql, read="postgres")
    except SqlglotError as e:
        return str(e).splitlines()[0] if str(e) else e.__class__.__name__
    return None


def _column_list(names: List[str]) -> str:
    return ", ".join(pg_identifier(n) for n in names)


def _sql_text(text: str) -> str:
    # Comment texts come from DB2 with their quotes already doubled
    return f"'{text}'"


class PgDdlEmitter:
    """Emit the before / after / unsure scripts for a catalog."""

    def __init__(self, catalog: Catalog, resolver: Optional[NameResolver] = None,
                 with_tablespaces: bool = False):
        self.catalog = catalog
        self.resolver = resolver if resolver is not None else NameResolver(catalog)
        self.with_tablespaces = with_tablespaces
        self.stats: Dict[str, int] = defaultdict(int)

    def emit(self) -> DdlScripts:
        """Build the three scripts. Names are resolved in script order."""
        before = self.emit_before()
        after = self.emit_after()
        unsure = self.emit_unsure()
        return DdlScripts(before=before, after=after, unsure=unsure)

    def _schemas(self) -> List[Schema]:
        return [self.catalog.schemas[name] for name in sorted(self.catalog.schemas)]

    # #########################################################################
    #  before.sql
    # #########################################################################

    def emit_before(self) -> str:
        out: List[str] = [CLIENT_ENCODING, ""]

        if self.with_tablespaces:
            for name in sorted(self.catalog.tablespaces):
                tablespace = self.catalog.tablespaces[name]
                if not tablespace.paths:
                    log.warning("Tablespace %s has no container path. It is not created", name)
                    continue
                out.append(f"CREATE TABLESPACE {pg_identifier(name)} LOCATION '{tablespace.paths[0]}';")
                self.stats["tablespaces"] += 1
            out.append("")

        for name in sorted(self.catalog.roles):
            role = self.catalog.roles[name]
            out.append(f"CREATE ROLE {pg_identifier(name)};")
            if role.comment is not None:
                out.append(f"COMMENT ON ROLE {pg_identifier(name)} IS {_sql_text(role.comment)};")
            self.stats["roles"] += 1
        out.append("")

        for schema in self._schemas():
            authorization = f" AUTHORIZATION {pg_identifier(schema.authorization)}" if schema.authorization else ""
            out.append(f"CREATE SCHEMA {pg_identifier(schema.name)}{authorization};")
            self.stats["schemas"] += 1
        out.append("")

        for schema in self._schemas():
            for name in sorted(schema.sequences):
                out.append(self._sequence_ddl(schema, schema.sequences[name]))
                self.stats["sequences"] += 1

        for schema in self._schemas():
            for name in sorted(schema.domains):
                domain = schema.domains[name]
                out.append(f"CREATE DOMAIN {qualified_name(schema.name, name)} AS {domain.base_type};")
                self.stats["domains"] += 1
        out.append("")

        for schema, table in self.catalog.iter_tables():
            out.append(self._table_ddl(schema, table))
            out.extend(self._table_comments(schema, table))
            out.append("")
            self.stats["tables"] += 1

        return "\n".join(out) + "\n"

    def _sequence_ddl(self, schema: Schema, sequence: Sequence) -> str:
        seq_name = self.resolver.resolve(schema.name, sequence.name, "sequence")
        qualified = f"{pg_identifier(schema.name)}.{pg_identifier(seq_name)}"
        parts = [f"CREATE SEQUENCE {qualified}"]
        parts.append(f"  INCREMENT BY {sequence.increment}")
        if sequence.min_value is not None:
            parts.append(f"  MINVALUE {sequence.min_value}")
        if sequence.max_value is not None:
            parts.append(f"  MAXVALUE {sequence.max_value}")
        if sequence.start is not None:
            parts.append(f"  START WITH {sequence.start}")
        if sequence.cache is not None:
            parts.append(f"  CACHE {sequence.cache}")
        parts.append("  CYCLE" if sequence.cycle else "  NO CYCLE")
        ddl = "\n".join(parts) + ";"

        restart = sequence.resolved_restart()
        if restart is not None:
            if restart != sequence.restart_with:
                log.warning("Sequence %s.%s has RESTART WITH %d below its MINVALUE %d. Restarting at %d",
                            schema.name, sequence.name, sequence.restart_with, sequence.min_value, restart)
            ddl += f"\nALTER SEQUENCE {qualified} RESTART WITH {restart};"
        return ddl

    def _column_ddl(self, column: Column) -> str:
        parts = [pg_identifier(column.name), column.type]
        default = column_default_sql(column)
        if default is not None:
            parts.append(f"DEFAULT {default}")
        if column.not_null:
            parts.append("NOT NULL")
        return "  " + " ".join(parts)

    def _table_ddl(self, schema: Schema, table: Table) -> str:
        col_defs = [self._column_ddl(c) for c in sorted(table.columns, key=lambda c: c.position)]
        ddl = f"CREATE TABLE {qualified_name(schema.name, table.name)} (\n"
        ddl += ",\n".join(col_defs)
        ddl += "\n)"
        if self.with_tablespaces and table.tablespace:
            ddl += f"\nTABLESPACE {pg_identifier(table.tablespace)}"
        return ddl + ";"

    def _table_comments(self, schema: Schema, table: Table) -> List[str]:
        out: List[str] = []
        qualified = qualified_name(schema.name, table.name)
        if table.comment is not None:
            out.append(f"COMMENT ON TABLE {qualified} IS {_sql_text(table.comment)};")
        for column in sorted(table.columns, key=lambda c: c.position):
            if column.comment is not None:
                out.append(f"COMMENT ON COLUMN {qualified}.{pg_identifier(column.name)} "
                           f"IS {_sql_text(column.comment)};")
        return out

    # #########################################################################
    #  after.sql
    # #########################################################################

    def emit_after(self) -> str:
        out: List[str] = [CLIENT_ENCODING, ""]

        # PRIMARY KEY / UNIQUE
        for schema, table in self.catalog.iter_tables():
            out.extend(self._key_constraints_ddl(schema, table))

        # Indexes
        for schema, table in self.catalog.iter_tables():
            for name in sorted(table.indexes):
                out.extend(self._index_ddl(schema, table, table.indexes[name]))

        # Foreign keys, validated later in unsure.sql
        for schema, table in self.catalog.iter_tables():
            for fk in table.constraints_of("fk"):
                out.append(self._foreign_key_ddl(schema, table, fk))
                self.stats["foreign_keys"] += 1

        # Identity sequences, once the indexes exist
        for schema, table in self.catalog.iter_tables():
            for column in sorted(table.columns, key=lambda c: c.position):
                if column.identity is not None:
                    out.append(self._identity_ddl(schema, table, column, column.identity))
                    self.stats["identities"] += 1

        return "\n".join(out) + "\n"

    def _index_tablespace_clause(self, table: Table, using_index: bool) -> str:
        if not (self.with_tablespaces and table.index_tablespace):
            return ""
        keyword = "USING INDEX TABLESPACE" if using_index else "TABLESPACE"
        return f" {keyword} {pg_identifier(table.index_tablespace)}"

    def _key_constraints_ddl(self, schema: Schema, table: Table) -> List[str]:
        out: List[str] = []
        qualified = qualified_name(schema.name, table.name)
        keys = []
        if table.primary_key is not None:
            keys.append((table.primary_key, "PRIMARY KEY"))
        keys.extend((c, "UNIQUE") for c in table.constraints_of("unique"))
        for key, keyword in keys:
            constraint = ""
            if key.name:
                name = self.resolver.resolve(schema.name, key.name, key.kind)
                constraint = f" CONSTRAINT {pg_identifier(name)}"
            out.append(f"ALTER TABLE {qualified} ADD{constraint} {keyword} ({_column_list(key.columns)})"
                       f"{self._index_tablespace_clause(table, using_index=True)};")
            self.stats["primary_keys" if key.kind == "pk" else "unique_constraints"] += 1
        return out

    def _index_ddl(self, schema: Schema, table: Table, index: Index) -> List[str]:
        qualified = qualified_name(schema.name, table.name)
        tablespace = self._index_tablespace_clause(table, using_index=False)
        key_columns = [pg_identifier(c.name) + (f" {c.direction}" if c.direction else "") for c in index.columns]
        include_columns = [pg_identifier(c) for c in index.include_columns]
        name = self.resolver.resolve(schema.name, index.name, "index")
        unique = "UNIQUE " if index.unique else ""
        self.stats["indexes"] += 1

        if not include_columns:
            return [f"CREATE {unique}INDEX {pg_identifier(name)} ON {qualified} ({', '.join(key_columns)}){tablespace};"]

        if index.unique:
            # The UNIQUE index enforces the key, the second one covers the query
            cov_name = self.resolver.resolve(schema.name, f"{index.name}_cov1", "index")
            log.warning("%s.%s is a UNIQUE covering index. It has been replaced by two indexes, %s and %s",
                        schema.name, index.name, name, cov_name)
            self.stats["indexes"] += 1
            return [
                f"CREATE UNIQUE INDEX {pg_identifier(name)} ON {qualified} ({', '.join(key_columns)}){tablespace};",
                f"CREATE INDEX {pg_identifier(cov_name)} ON {qualified} "
                f"({', '.join(key_columns + include_columns)}){tablespace};",
            ]

        log.warning("%s.%s is a covering index. As it is not unique, INCLUDE columns have been added "
                    "as plain index columns", schema.name, index.name)
        return [f"CREATE INDEX {pg_identifier(name)} ON {qualified} ({', '.join(key_columns + include_columns)}){tablespace};"]

    def foreign_key_name(self, table: Table, fk: ForeignKey) -> str:
        """PostgreSQL name of a foreign key.

        Unnamed ones get the name PostgreSQL would give them, <table>_<cols>_fkey,
        then fkey1, fkey2, ... when that name is already used on the same table.
        """
        if fk.name:
            return pg_identifier(fk.name)
        foreign_keys = table.constraints_of("fk")
        taken = {pg_identifier(other.name) for other in foreign_keys if other.name}
        for other in foreign_keys:
            if other.name:
                continue
            base = pg_identifier("_".join([table.name] + other.columns + ["fkey"]))
            name, suffix = base, 0
            while name in taken:
                suffix += 1
                name = f"{base}{suffix}"
            taken.add(name)
            if other is fk:
                return name
        raise ValueError(f"Foreign key {fk} does not belong to table {table.name}")

    def _foreign_key_ddl(self, schema: Schema, table: Table, fk: ForeignKey) -> str:
        name = self.foreign_key_name(table, fk)
        if not fk.enforced:
            log.warning("Foreign key %s on %s.%s is NOT ENFORCED in DB2. Its validation will probably fail",
                        name, schema.name, table.name)
        ddl = (
            f"ALTER TABLE {qualified_name(schema.name, table.name)} "
            f"ADD CONSTRAINT {name} "
            f"FOREIGN KEY ({_column_list(fk.columns)}) "
            f"REFERENCES {qualified_name(fk.ref_schema, fk.ref_table)} ({_column_list(fk.ref_columns)})"
        )
        if fk.on_delete:
            ddl += f" ON DELETE {fk.on_delete}"
        if fk.on_update:
            ddl += f" ON UPDATE {fk.on_update}"
        return ddl + " NOT VALID;"

    def _identity_ddl(self, schema: Schema, table: Table, column: Column, identity: Identity) -> str:
        display = f"{schema.name}.{table.name}.{column.name}"
        if identity.order:
            log.warning("Sequences in PostgreSQL have no ORDER restriction, and %s is an ORDER identity. "
                        "Behavior will be different", display)
        if identity.always:
            log.warning("%s is a GENERATED ALWAYS identity. It becomes a plain default, "
                        "so explicit values will not be refused", display)

        seq_name = self.resolver.resolve(schema.name, f"{table.name}_{column.name}_seq", "sequence")
        qualified_seq = f"{pg_identifier(schema.name)}.{pg_identifier(seq_name)}"
        qualified_table = qualified_name(schema.name, table.name)
        col = pg_identifier(column.name)

        parts = [f"CREATE SEQUENCE {qualified_seq}"]
        if identity.increment is not None:
            parts.append(f"  INCREMENT BY {identity.increment}")
        if identity.min_value is not None:
            parts.append(f"  MINVALUE {identity.min_value}")
        if identity.max_value is not None:
            parts.append(f"  MAXVALUE {identity.max_value}")
        if identity.start is not None:
            parts.append(f"  START WITH {identity.start}")
        if identity.cache is not None:
            parts.append(f"  CACHE {identity.cache}")
        parts.append("  CYCLE" if identity.cycle else "  NO CYCLE")
        parts.append(f"  OWNED BY {qualified_table}.{col};")
        return "\n".join([
            "\n".join(parts),
            f"ALTER TABLE {qualified_table} ALTER COLUMN {col} SET DEFAULT nextval('{qualified_seq}');",
            f"SELECT setval('{qualified_seq}', (SELECT max({col})::bigint FROM {qualified_table}));",
        ])

    # #########################################################################
    #  unsure.sql
    # #########################################################################

    def emit_unsure(self) -> str:
        out: List[str] = [
            UNSURE_HEADER,
            "\\set ECHO errors",
            CLIENT_ENCODING,
            'set search_path TO db2, "$user", public;',
            "",
        ]

        for schema, table in self.catalog.iter_tables():
            for fk in table.constraints_of("fk"):
                out.append(f"ALTER TABLE {qualified_name(schema.name, table.name)} "
                           f"VALIDATE CONSTRAINT {self.foreign_key_name(table, fk)};")

        for schema, table in self.catalog.iter_tables():
            for check in table.constraints_of("check"):
                out.extend(self._check_ddl(schema, table, check))
        out.append("")

        for view in self.catalog.views:
            out.extend(self._view_ddl(view))
        for schema in self._schemas():
            out.extend(self._view_comments(schema))
        out.append("")

        out.append(FUNCTIONS_BANNER)
        for schema in self._schemas():
            for key in sorted(schema.functions):
                function = schema.functions[key]
                out.append(f"CREATE FUNCTION {qualified_name(schema.name, function.name)} AS\n"
                           f"$func$\n{function.statement}\n$func$;")
                self.stats["functions"] += 1
        out.append("")

        out.append(TRIGGERS_BANNER)
        for schema in self._schemas():
            for name in sorted(schema.triggers):
                trigger = schema.triggers[name]
                function = qualified_name(schema.name, f"{name}_fn")
                out.append(f"CREATE FUNCTION {function}() RETURNS trigger LANGUAGE plpgsql AS\n"
                           f"$func$\n{trigger.statement}\n$func$;")
                if trigger.comment is not None:
                    out.append(f"COMMENT ON FUNCTION {function}() IS {_sql_text(trigger.comment)};")
                out.append("-- Add the CREATE TRIGGER too!")
                out.append("")
                self.stats["triggers"] += 1

        return "\n".join(out) + "\n"

    def _with_probe(self, sql: str, what: str, probed: Optional[str] = None) -> List[str]:
        error = probe_postgres_syntax(probed if probed is not None else sql.rstrip().rstrip(";"))
        if error is None:
            return [sql]
        log.warning("%s does not parse as PostgreSQL: %s", what, error)
        self.stats["probe_failures"] += 1
        return [f"-- WARNING: does not parse as PostgreSQL: {error}", sql]

    def _check_ddl(self, schema: Schema, table: Table, check) -> List[str]:
        qualified = qualified_name(schema.name, table.name)
        constraint = f" CONSTRAINT {pg_identifier(check.name)}" if check.name else ""
        condition = check.condition
        if not (condition.startswith("(") and condition.endswith(")")):
            condition = f"({condition})"
        self.stats["check_constraints"] += 1
        sql = f"ALTER TABLE {qualified} ADD{constraint} CHECK {condition};"
        return self._with_probe(sql, f"CHECK constraint on {schema.name}.{table.name}",
                                probed=f"SELECT 1 FROM {qualified} WHERE {condition}")

    def search_path(self, view: View) -> str:
        """search_path reproducing the CURRENT SCHEMA and CURRENT PATH a view was created with."""
        entries: List[str] = []
        candidates = [view.current_schema] + view.current_path.split(",")
        for entry in candidates:
            entry = entry.replace('"', "").strip().lower()
            if entry and entry not in entries:
                entries.append(entry)
        if "db2" not in entries:
            entries.append("db2")
        return f"set search_path TO {', '.join(entries)};"

    def _view_ddl(self, view: View) -> List[str]:
        name = qualified_name(view.schema, view.name) if view.schema else pg_identifier(view.name)
        body = try_fix_expression(view.statement)
        sql = f"CREATE VIEW {name} {body};"
        self.stats["views"] += 1
        query = _VIEW_QUERY_PATTERN.match(body)
        return [self.search_path(view)] + self._with_probe(
            sql, f"View {view.schema}.{view.name}", probed=query.group("query") if query else None)

    def _view_comments(self, schema: Schema) -> List[str]:
        out: List[str] = []
        for view_name in sorted(schema.view_comments):
            out.append(f"COMMENT ON VIEW {qualified_name(schema.name, view_name)} "
                       f"IS {_sql_text(schema.view_comments[view_name])};")
        for view_name, column in sorted(schema.view_column_comments):
            out.append(f"COMMENT ON COLUMN {qualified_name(schema.name, view_name)}.{pg_identifier(column)} "
                       f"IS {_sql_text(schema.view_column_comments[(view_name, column)])};")
        return out


def emit_scripts(catalog: Catalog, with_tablespaces: bool = False) -> DdlScripts:
    return PgDdlEmitter(catalog, with_tablespaces=with_tablespaces).emit()
