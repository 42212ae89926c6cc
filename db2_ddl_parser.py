"""
DB2 DDL parser / catalog builder
================================

Reads the statements produced by db2_statement_reader and fills a Catalog.

The first line of every statement is classified against STATEMENT_FORMS, an
ordered list of (kind, pattern) pairs; the first matching pattern wins. Forms
that span several lines (CREATE TABLE, ALTER TABLE ... ADD CONSTRAINT,
CREATE INDEX, CREATE SEQUENCE, CREATE TABLESPACE) read the rest of the
statement with small helpers working on a deque of lines, the same way
db2look lays them out:

    CREATE TABLE "APP"."ORDERS"  (
              "ID" INTEGER NOT NULL GENERATED BY DEFAULT AS IDENTITY (
                START WITH +1
                ...
                NO ORDER ) ,
              "STATUS" CHAR(1) NOT NULL WITH DEFAULT 'N' )
             IN "USERSPACE1"

Anything outside this grammar stops the conversion: a statement we do not
understand is an UnrecognizedStatement, an unexpected line inside a
multi-line form is a MalformedSubclause.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from db2_catalog import (
    Catalog,
    CheckConstraint,
    ForeignKey,
    Function,
    Identity,
    Index,
    IndexColumn,
    MalformedSubclause,
    PrimaryKey,
    Sequence,
    Table,
    Tablespace,
    Trigger,
    UniqueConstraint,
    UnrecognizedStatement,
    View,
    Domain,
)
from db2_statement_reader import Statement, StatementReader
from db2_to_pg_transforms import convert_db2_type, generated_expression_default

log = logging.getLogger("db2_to_pg_migrator")

# Identifier as typed by a user (views, triggers, functions): quoted or not
_IDENT = r'(?:"[^"]+"|[A-Za-z_][\w$#@]*)'

UNRECOGNIZED = "unrecognized"

# Groups of STATEMENT_FORMS holding the name of a declared or referenced object
_NAME_GROUPS = ("name", "schema", "table", "column", "owner", "index_schema")

# =============================================================================
# Statement forms, matched in order against the first line of a statement
# =============================================================================
STATEMENT_FORMS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("ignored", re.compile(r"^(?:CREATE BUFFERPOOL|CONNECT (?:TO|RESET)|ALTER TABLESPACE|COMMIT WORK|TERMINATE)\b")),
    ("create_tablespace", re.compile(
        r'^CREATE (?:REGULAR |LARGE |(?:USER |SYSTEM )?TEMPORARY )?TABLESPACE "(?P<name>[^"]*?)\s*"')),
    ("create_role", re.compile(r'^CREATE ROLE "(?P<name>[^"]*?)\s*"\s*$')),
    ("comment_role", re.compile(r'^COMMENT ON ROLE "(?P<name>[^"]*?)\s*"\s+IS \'(?P<text>.*)$')),
    ("create_schema", re.compile(
        r'^CREATE SCHEMA "(?P<schema>[^"]*?)\s*"(?:\s+AUTHORIZATION\s+"(?P<owner>[^"]*?)\s*")?\s*$')),
    ("create_sequence", re.compile(
        r'^CREATE SEQUENCE "(?P<schema>[^"]*?)\s*"\."(?P<name>[^"]*?)\s*"'
        r'(?:\s+AS\s+(?:SMALLINT|INTEGER|BIGINT|DECIMAL\s*\(\s*\d+\s*(?:,\s*0\s*)?\)))?\s*$')),
    ("restart_sequence", re.compile(
        r'^ALTER SEQUENCE "(?P<schema>[^"]*?)\s*"\."(?P<name>[^"]*?)\s*"\s+RESTART WITH (?P<value>-?\d+)\s*$')),
    ("create_table", re.compile(r'^CREATE TABLE "(?P<schema>[^"]*?)\s*"\."(?P<name>[^"]*?)\s*"\s*\(\s*$')),
    ("alter_table", re.compile(r'^ALTER TABLE "(?P<schema>[^"]*?)\s*"\."(?P<name>[^"]*?)\s*"\s*$')),
    ("restart_identity", re.compile(
        r'^ALTER TABLE "(?P<schema>[^"]*?)\s*"\."(?P<table>[^"]*?)\s*"\s+ALTER COLUMN "(?P<column>[^"]*?)\s*"'
        r'\s+RESTART WITH (?P<value>-?\d+)\s*$')),
    ("ignored", re.compile(r"^ALTER TABLE .* PCTFREE \d+")),
    ("create_index", re.compile(
        r'^CREATE (?P<unique>UNIQUE )?INDEX "(?P<index_schema>[^"]*?)\s*"\."(?P<name>[^"]*?)\s*"'
        r'\s+ON\s+"(?P<schema>[^"]*?)\s*"\."(?P<table>[^"]*?)\s*"\s*$')),
    ("comment_column", re.compile(
        r'^COMMENT ON COLUMN "(?P<schema>[^"]*?)\s*"\."(?P<table>[^"]*?)\s*"\."(?P<column>[^"]*?)\s*"'
        r'\s+IS \'(?P<text>.*)$')),
    ("comment_table", re.compile(
        r'^COMMENT ON TABLE "(?P<schema>[^"]*?)\s*"\."(?P<table>[^"]*?)\s*"\s+IS \'(?P<text>.*)$')),
    ("create_domain", re.compile(
        r'^CREATE DISTINCT TYPE "(?P<schema>[^"]*?)\s*"\."(?P<name>[^"]*?)\s*"\s+AS\s+"SYSIBM\s*"\.'
        r'(?P<base>.+?)(?:\s+WITH COMPARISONS)?\s*$')),
    ("set_schema", re.compile(r'^SET CURRENT SCHEMA\s*=\s*"?(?P<schema>[^"]*?)\s*"?\s*$')),
    ("set_path", re.compile(r"^SET CURRENT PATH\s*=\s*(?P<path>.+?)\s*$")),
    ("create_view", re.compile(
        rf"^CREATE\s+(?:OR\s+REPLACE\s+)?VIEW\s+(?:(?P<schema>{_IDENT})\s*\.\s*)?(?P<name>{_IDENT})\s*(?P<rest>.*)$",
        re.IGNORECASE)),
    ("create_trigger", re.compile(
        rf"^CREATE\s+(?:OR\s+REPLACE\s+)?TRIGGER\s+(?:(?P<schema>{_IDENT})\s*\.\s*)?(?P<name>{_IDENT})\s*(?P<rest>.*)$",
        re.IGNORECASE)),
    ("comment_trigger", re.compile(
        r'^COMMENT ON TRIGGER "(?P<schema>[^"]*?)\s*"\s*\."(?P<name>[^"]*?)\s*"\s+IS \'(?P<text>.*)$')),
    ("create_function", re.compile(
        rf"^CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\s+(?:(?P<schema>{_IDENT})\s*\.\s*)?(?P<name>{_IDENT})(?P<rest>.*)$",
        re.IGNORECASE)),
    # The privilege systems are too different
    ("ignored", re.compile(r"^GRANT\b")),
)

# =============================================================================
# Sub-grammar patterns
# =============================================================================
_SEQUENCE_RANGE_PATTERN = re.compile(r"MINVALUE (?P<min>-?\d+) MAXVALUE (?P<max>-?\d+)")
_SEQUENCE_START_PATTERN = re.compile(r"START WITH (?P<start>-?\d+) INCREMENT BY (?P<increment>-?\d+)")
_SEQUENCE_CACHE_PATTERN = re.compile(r"(?:NO CACHE|CACHE (?P<cache>\d+)) (?P<no_cycle>NO )?CYCLE")

_COLUMN_PATTERN = re.compile(
    r'^\s*"(?P<name>[^"]*?)\s*"\s+(?P<type>.+?)'
    r"(?P<not_null>\s+NOT NULL)?"
    r"(?:(?P<with_default>\s+WITH DEFAULT)(?:\s+(?!(?:,|\))\s*$)(?P<default>.*?))?"
    r"|\s+GENERATED (?P<identity>BY DEFAULT|ALWAYS) AS IDENTITY\s*\("
    r"|\s+GENERATED (?P<generated>BY DEFAULT|ALWAYS) AS \((?P<expression>.*?)\))?"
    r"(?:\s+(?P<end>,|\)))?\s*$"
)
# A column type, as db2look writes it, and the default values it writes after WITH DEFAULT.
# Anything else left in the type or default group is a clause we do not know.
_COLUMN_TYPE_PATTERN = re.compile(
    r'^(?:"[^"]+"\s*\.\s*"[^"]+"'
    r"|(?:SMALLINT|INTEGER|INT|BIGINT|DECIMAL|DEC|NUMERIC|NUM|REAL|DOUBLE|FLOAT|DECFLOAT|BOOLEAN"
    r"|CHARACTER|CHAR|VARCHAR|LONG VARCHAR|CLOB|GRAPHIC|VARGRAPHIC|LONG VARGRAPHIC|DBCLOB"
    r"|BINARY|VARBINARY|BLOB|DATE|TIMESTAMP|TIME|XML)"
    r"(?:\s*\([^)]*\))?"
    r"(?:\s+(?:FOR (?:BIT|SBCS|MIXED) DATA|(?:NOT )?LOGGED|(?:NOT )?COMPACT|INLINE LENGTH \d+|CCSID \w+))*)$"
)
_COLUMN_DEFAULT_PATTERN = re.compile(
    r"^(?:'(?:[^']|'')*'"
    r"|[-+]?\d+(?:\.\d*)?(?:E[-+]?\d+)?"
    r"|[XG]'[^']*'"
    r"|NULL|USER|SESSION_USER|SYSTEM_USER"
    r"|CURRENT[ _](?:DATE|TIME|TIMESTAMP|USER|SCHEMA|PATH|SERVER|TIMEZONE)(?:\s*\(\s*\d+\s*\))?"
    r'|(?:"[^"]+"\s*\.\s*)?(?:"[^"]+"|[A-Z_]\w*)\s*\(.*\))$'
)
_CLOSE_COLUMNS_PATTERN = re.compile(r"^\s*\)\s*$")
_TABLE_STORAGE_PATTERN = re.compile(
    r'^\s*(?:IN\s+"(?P<tablespace>[^"]*?)\s*")?'
    r'\s*(?:INDEX\s+IN\s+"(?P<index_tablespace>[^"]*?)\s*")?'
    r'\s*(?:LONG\s+IN\s+"(?P<long_tablespace>[^"]*?)\s*")?'
    r"\s*(?:ORGANIZE\s+BY\s+(?:ROW|COLUMN))?\s*$"
)
_IDENTITY_CLAUSE_PATTERN = re.compile(
    r"^\s*(?:START WITH \+?(?P<start>-?\d+)"
    r"|INCREMENT BY \+?(?P<increment>-?\d+)"
    r"|MINVALUE \+?(?P<min>-?\d+)"
    r"|MAXVALUE \+?(?P<max>-?\d+)"
    r"|(?P<no_cycle>NO CYCLE)"
    r"|(?P<cycle>CYCLE)"
    r"|(?P<no_cache>NO CACHE)"
    r"|CACHE (?P<cache>\d+)"
    r"|(?P<order>(?:NO )?ORDER)\s*\)(?:\s*(?P<end>,|\)))?)\s*$"
)

_LIST_ITEM_PATTERN = re.compile(
    r'^\s*\(?\s*(?:"(?P<quoted>[^"]*?)\s*"|(?P<bare>[A-Za-z_][\w$#@]*))'
    r"(?:\s+(?P<direction>ASC|DESC))?\s*(?P<end>,|\))?\s*$"
)
_ADD_KEY_PATTERN = re.compile(
    r'^\s*ADD(?:\s+CONSTRAINT\s+"(?P<name>[^"]*?)\s*")?\s+(?P<kind>PRIMARY KEY|UNIQUE)\s*$')
_ADD_FOREIGN_KEY_PATTERN = re.compile(
    r'^\s*ADD(?:\s+CONSTRAINT\s+"(?P<name>[^"]*?)\s*")?\s+FOREIGN KEY\s*$')
_ADD_CHECK_PATTERN = re.compile(
    r'^\s*ADD(?:\s+CONSTRAINT\s+(?:"(?P<quoted>[^"]*?)\s*"|(?P<bare>\S+)))?\s+CHECK\s*$')
_REFERENCES_PATTERN = re.compile(r'^\s*REFERENCES\s+"(?P<schema>[^"]*?)\s*"\."(?P<table>[^"]*?)\s*"\s*$')
_CONSTRAINT_TRAILER_PATTERN = re.compile(
    r"^\s*(?:ON (?P<event>DELETE|UPDATE) (?P<action>RESTRICT|NO ACTION|CASCADE|SET NULL)"
    r"|(?P<not_enforced>NOT )?ENFORCED"
    r"|(?:ENABLE|DISABLE) QUERY OPTIMIZATION)\s*$"
)
_CHECK_END_PATTERN = re.compile(r"^\s*(?:NOT\s+)?ENFORCED\s*$")

_INCLUDE_PATTERN = re.compile(r"^\s*INCLUDE\s*(?P<rest>\(.*)$")
_INDEX_TRAILER_CLAUSE = (
    r"(?:(?:DIS)?ALLOW REVERSE SCANS|COMPRESS (?:YES|NO)|PCTFREE \d+|MINPCTUSED \d+|CLUSTER"
    r"|PAGE SPLIT (?:SYMMETRIC|HIGH|LOW)|COLLECT(?: SAMPLED)?(?: DETAILED)? STATISTICS)"
)
_INDEX_TRAILER_PATTERN = re.compile(rf"^\s*{_INDEX_TRAILER_CLAUSE}(?:\s+{_INDEX_TRAILER_CLAUSE})*\s*$")

_TABLESPACE_USING_PATTERN = re.compile(r"^\s*USING\s*\((?P<rest>.*)$")
_TABLESPACE_CONTAINER_PATTERN = re.compile(
    r"(?:FILE\s+|DEVICE\s+)?'(?P<path>[^']*)'(?:\s+\d+\s*[KMG]?)?\s*(?P<end>,|\))")
_TABLESPACE_ATTRIBUTE_PATTERN = re.compile(
    r"EXTENTSIZE|PREFETCHSIZE|BUFFERPOOL|OVERHEAD|TRANSFERRATE|AUTORESIZE|INCREASESIZE|MAXSIZE"
    r"|INITIALSIZE|FILE SYSTEM CACHING|DROPPED TABLE|PAGESIZE|MANAGED BY|DATA TAG"
)


def classify_statement(first_line: str) -> Tuple[str, Optional["re.Match[str]"]]:
    """Return (kind, match) for the first form matching `first_line`, or (UNRECOGNIZED, None)."""
    line = first_line.lstrip()
    for kind, pattern in STATEMENT_FORMS:
        m = pattern.match(line)
        if m:
            return kind, m
    return UNRECOGNIZED, None


def _object_name(token: Optional[str]) -> Optional[str]:
    """Name of an object as DB2 stores it: quoted names keep their case, others are upper-cased."""
    if token is None:
        return None
    token = token.strip()
    if token.startswith('"') and token.endswith('"'):
        return token[1:-1].rstrip()
    return token.upper()


def _slurp_comment(first: str, lines: Deque[str]) -> str:
    """Comment text spanning the rest of the statement, without its closing quote."""
    text = "\n".join([first] + list(lines)).rstrip()
    lines.clear()
    if text.endswith("'"):
        text = text[:-1]
    return text


def _slurp_statement(first: str, lines: Deque[str]) -> str:
    parts = [first.strip()] if first.strip() else []
    parts.extend(lines)
    lines.clear()
    return "\n".join(parts)


def _expect_end(lines: Deque[str], statement: Statement, what: str) -> None:
    if lines:
        raise MalformedSubclause(
            f"Overflow in {what} (line {statement.line_number}): {' '.join(l.strip() for l in lines)}"
        )


def _parse_column_list(lines: Deque[str], context: str, with_direction: bool = False) -> List[IndexColumn]:
    """Read a parenthesized, one-column-per-line list up to its closing ')'."""
    columns: List[IndexColumn] = []
    while lines:
        line = lines.popleft()
        m = _LIST_ITEM_PATTERN.match(line)
        if not m or (m.group("direction") and not with_direction):
            raise MalformedSubclause(f"I don't understand {line.strip()!r} in {context}. I expected a list of columns")
        name = m.group("quoted") if m.group("quoted") is not None else m.group("bare").upper()
        columns.append(IndexColumn(name=name, direction=m.group("direction")))
        if m.group("end") == ")":
            return columns
    raise MalformedSubclause(f"Unterminated list of columns in {context}")


def _parse_identity(lines: Deque[str], always: bool, context: str) -> Tuple[Identity, bool]:
    """Read an identity block up to its [NO] ORDER ) line.

    Returns the identity and whether that last line also closed the column list.
    """
    identity = Identity(always=always)
    while lines:
        line = lines.popleft()
        m = _IDENTITY_CLAUSE_PATTERN.match(line)
        if not m:
            raise MalformedSubclause(f"Cannot understand {line.strip()!r} in an IDENTITY definition of {context}")
        if m.group("start") is not None:
            identity.start = int(m.group("start"))
        elif m.group("increment") is not None:
            identity.increment = int(m.group("increment"))
        elif m.group("min") is not None:
            identity.min_value = int(m.group("min"))
        elif m.group("max") is not None:
            identity.max_value = int(m.group("max"))
        elif m.group("no_cycle"):
            identity.cycle = False
        elif m.group("cycle"):
            identity.cycle = True
        elif m.group("no_cache"):
            # NO CACHE is CACHE 1 for PostgreSQL
            identity.cache = 1
        elif m.group("cache") is not None:
            identity.cache = int(m.group("cache"))
        elif m.group("order"):
            identity.order = not m.group("order").startswith("NO")
            return identity, m.group("end") == ")"
    raise MalformedSubclause(f"IDENTITY definition of {context} is not terminated by [NO] ORDER")


class Db2DdlParser:
    """Build a Catalog from the statements of a DB2 dump."""

    def __init__(self, catalog: Optional[Catalog] = None):
        self.catalog = catalog if catalog is not None else Catalog()
        # SET CURRENT SCHEMA / PATH, captured by the views, triggers and functions that follow
        self.current_schema = ""
        self.current_path = ""
        self.stats: Dict[str, int] = defaultdict(int)
        self._dashed_names: Set[str] = set()
        self._handlers = {
            "ignored": self._handle_ignored,
            "create_tablespace": self._handle_create_tablespace,
            "create_role": self._handle_create_role,
            "comment_role": self._handle_comment_role,
            "create_schema": self._handle_create_schema,
            "create_sequence": self._handle_create_sequence,
            "restart_sequence": self._handle_restart_sequence,
            "create_table": self._handle_create_table,
            "alter_table": self._handle_alter_table,
            "restart_identity": self._handle_restart_identity,
            "create_index": self._handle_create_index,
            "comment_column": self._handle_comment_column,
            "comment_table": self._handle_comment_table,
            "create_domain": self._handle_create_domain,
            "set_schema": self._handle_set_schema,
            "set_path": self._handle_set_path,
            "create_view": self._handle_create_view,
            "create_trigger": self._handle_create_trigger,
            "comment_trigger": self._handle_comment_trigger,
            "create_function": self._handle_create_function,
        }

    def parse(self, statements: Iterable[Statement]) -> Catalog:
        for statement in statements:
            self.parse_statement(statement)
        return self.catalog

    def parse_statement(self, statement: Statement) -> None:
        kind, m = classify_statement(statement.first_line)
        if kind == UNRECOGNIZED:
            raise UnrecognizedStatement(
                f"I don't understand <{statement.first_line.strip()}> (line {statement.line_number})"
            )
        self.stats[kind] += 1
        for group in _NAME_GROUPS:
            if group in m.re.groupindex:
                self._note_name(m.group(group))
        lines = deque(statement.lines[1:])
        self._handlers[kind](m, lines, statement)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _note_name(self, name: Optional[str]) -> None:
        """Warn, once per name, that '-' will be dropped from it in PostgreSQL."""
        if not name:
            return
        name = name.strip().strip('"').rstrip()
        if "-" in name and name not in self._dashed_names:
            self._dashed_names.add(name)
            log.warning("Renamed %s to %s: '-' is not allowed in object names", name, name.replace("-", ""))

    def _table(self, schema: str, table: str, statement: Statement) -> Table:
        tobj = self.catalog.find_table(schema, table)
        if tobj is None:
            raise UnrecognizedStatement(
                f"Table {schema}.{table} has not been declared (line {statement.line_number})"
            )
        return tobj

    # ------------------------------------------------------------------
    # Handlers, one per statement kind
    # ------------------------------------------------------------------

    def _handle_ignored(self, m, lines: Deque[str], statement: Statement) -> None:
        log.debug("Ignoring %s (line %d)", statement.first_line.strip(), statement.line_number)

    def _handle_create_tablespace(self, m, lines: Deque[str], statement: Statement) -> None:
        name = m.group("name")
        tablespace = self.catalog.tablespaces.setdefault(name, Tablespace(name=name))
        while lines:
            line = lines.popleft()
            using = _TABLESPACE_USING_PATTERN.match(line)
            if using:
                self._parse_tablespace_containers(using.group("rest"), lines, tablespace)
                continue
            if _TABLESPACE_ATTRIBUTE_PATTERN.search(line):
                continue
            raise MalformedSubclause(f"I don't understand {line.strip()!r} in a CREATE TABLESPACE section")

    def _parse_tablespace_containers(self, rest: str, lines: Deque[str], tablespace: Tablespace) -> None:
        while True:
            items = list(_TABLESPACE_CONTAINER_PATTERN.finditer(rest))
            if not items:
                raise MalformedSubclause(
                    f"I don't understand the list of files of tablespace {tablespace.name}: {rest.strip()!r}")
            for item in items:
                tablespace.paths.append(item.group("path"))
            if items[-1].group("end") == ")":
                return
            if not lines:
                raise MalformedSubclause(f"Unterminated list of files in tablespace {tablespace.name}")
            rest = lines.popleft()

    def _handle_create_role(self, m, lines: Deque[str], statement: Statement) -> None:
        self.catalog.role(m.group("name"))
        _expect_end(lines, statement, "CREATE ROLE")

    def _handle_comment_role(self, m, lines: Deque[str], statement: Statement) -> None:
        role = self.catalog.roles.get(m.group("name"))
        if role is None:
            raise UnrecognizedStatement(
                f"Role {m.group('name')} hasn't been seen before (line {statement.line_number})")
        role.comment = _slurp_comment(m.group("text"), lines)

    def _handle_create_schema(self, m, lines: Deque[str], statement: Statement) -> None:
        schema = self.catalog.schema(m.group("schema"))
        owner = m.group("owner")
        if owner:
            schema.authorization = owner
            # db2look may reference roles it never created
            self.catalog.role(owner)
        _expect_end(lines, statement, "CREATE SCHEMA")

    def _handle_create_sequence(self, m, lines: Deque[str], statement: Statement) -> None:
        schema = self.catalog.schema(m.group("schema"))
        sequence = schema.sequences.setdefault(m.group("name"), Sequence(name=m.group("name")))
        while lines:
            line = lines.popleft()
            range_m = _SEQUENCE_RANGE_PATTERN.search(line)
            start_m = _SEQUENCE_START_PATTERN.search(line)
            cache_m = _SEQUENCE_CACHE_PATTERN.search(line)
            if range_m:
                sequence.min_value = int(range_m.group("min"))
                sequence.max_value = int(range_m.group("max"))
            elif start_m:
                sequence.start = int(start_m.group("start"))
                sequence.increment = int(start_m.group("increment"))
            elif cache_m:
                sequence.cache = int(cache_m.group("cache")) if cache_m.group("cache") else 1
                sequence.cycle = cache_m.group("no_cycle") is None
            else:
                raise MalformedSubclause(f"I don't understand {line.strip()!r} in a CREATE SEQUENCE section")

    def _handle_restart_sequence(self, m, lines: Deque[str], statement: Statement) -> None:
        schema = self.catalog.schema(m.group("schema"))
        sequence = schema.sequences.get(m.group("name"))
        if sequence is None:
            raise UnrecognizedStatement(
                f"Sequence {m.group('schema')}.{m.group('name')} has not been declared (line {statement.line_number})")
        sequence.restart_with = int(m.group("value"))
        _expect_end(lines, statement, "ALTER SEQUENCE")

    def _handle_create_table(self, m, lines: Deque[str], statement: Statement) -> None:
        schema_name, table_name = m.group("schema"), m.group("name")
        display = f"{schema_name}.{table_name}"
        table = Table(name=table_name)
        self.catalog.schema(schema_name).tables[table_name] = table
        in_columns = True
        while lines:
            line = lines.popleft()
            if in_columns:
                col = _COLUMN_PATTERN.match(line)
                if col:
                    in_columns = self._add_column(table, display, col, lines)
                    continue
                if _CLOSE_COLUMNS_PATTERN.match(line):
                    in_columns = False
                    continue
            storage = _TABLE_STORAGE_PATTERN.match(line)
            if storage:
                table.tablespace = storage.group("tablespace") or table.tablespace
                table.index_tablespace = storage.group("index_tablespace") or table.index_tablespace
                table.long_tablespace = storage.group("long_tablespace") or table.long_tablespace
                continue
            raise MalformedSubclause(
                f"I don't understand {line.strip()!r} in the CREATE TABLE section of {display} "
                f"(statement at line {statement.line_number})")
        if not table.columns:
            raise MalformedSubclause(f"Table {display} has no columns (line {statement.line_number})")

    def _add_column(self, table: Table, display: str, col: "re.Match[str]", lines: Deque[str]) -> bool:
        """Record one column definition. Returns False once the column list is closed."""
        db2_type = col.group("type").strip()
        if not _COLUMN_TYPE_PATTERN.match(db2_type):
            raise MalformedSubclause(
                f"I don't understand the type {db2_type!r} of column {col.group('name')} in table {display}")
        if col.group("default") is not None and not _COLUMN_DEFAULT_PATTERN.match(col.group("default").strip()):
            raise MalformedSubclause(
                f"I don't understand the default {col.group('default').strip()!r} of column "
                f"{col.group('name')} in table {display}")
        self._note_name(col.group("name"))
        column = table.add_column(col.group("name"), db2_type, convert_db2_type(db2_type),
                                  not_null=col.group("not_null") is not None)
        if col.group("with_default"):
            column.default = col.group("default") or ""
        elif col.group("identity"):
            column.identity, closed = _parse_identity(
                lines, col.group("identity") == "ALWAYS", f"{display}.{column.name}")
            return not closed
        elif col.group("generated"):
            column.default = generated_expression_default(
                display, column.name, col.group("generated"), col.group("expression"))
        return col.group("end") != ")"

    def _handle_alter_table(self, m, lines: Deque[str], statement: Statement) -> None:
        schema_name, table_name = m.group("schema"), m.group("name")
        table = self._table(schema_name, table_name, statement)
        context = f"ALTER TABLE {schema_name}.{table_name}"
        if not lines:
            raise MalformedSubclause(f"Empty {context} (line {statement.line_number})")
        line = lines.popleft()

        key = _ADD_KEY_PATTERN.match(line)
        if key:
            self._note_name(key.group("name"))
            columns = [c.name for c in _parse_column_list(lines, context)]
            _expect_end(lines, statement, context)
            if key.group("kind") == "PRIMARY KEY":
                table.primary_key = PrimaryKey(columns=columns, name=key.group("name"))
            else:
                table.constraints.append(UniqueConstraint(columns=columns, name=key.group("name")))
            return

        fk = _ADD_FOREIGN_KEY_PATTERN.match(line)
        if fk:
            self._note_name(fk.group("name"))
            table.constraints.append(self._parse_foreign_key(fk.group("name"), lines, context))
            return

        check = _ADD_CHECK_PATTERN.match(line)
        if check:
            name = check.group("quoted") if check.group("quoted") is not None else check.group("bare")
            self._note_name(name)
            table.constraints.append(self._parse_check(name, lines, context))
            return

        raise MalformedSubclause(f"I don't understand {line.strip()!r} in an {context} section")

    def _parse_foreign_key(self, name: Optional[str], lines: Deque[str], context: str) -> ForeignKey:
        local_columns = [c.name for c in _parse_column_list(lines, context)]
        line = lines.popleft() if lines else ""
        ref = _REFERENCES_PATTERN.match(line)
        if not ref:
            raise MalformedSubclause(f"I don't understand {line.strip()!r} in an {context} section, expected REFERENCES")
        remote_columns = [c.name for c in _parse_column_list(lines, context)]
        fk = ForeignKey(columns=local_columns, ref_schema=ref.group("schema"), ref_table=ref.group("table"),
                        ref_columns=remote_columns, name=name)
        while lines:
            line = lines.popleft()
            trailer = _CONSTRAINT_TRAILER_PATTERN.match(line)
            if not trailer:
                raise MalformedSubclause(f"I don't understand {line.strip()!r} in an {context} FOREIGN KEY section")
            if trailer.group("event") == "DELETE":
                fk.on_delete = trailer.group("action")
            elif trailer.group("event") == "UPDATE":
                fk.on_update = trailer.group("action")
            elif "ENFORCED" in line:
                fk.enforced = trailer.group("not_enforced") is None
        return fk

    def _parse_check(self, name: Optional[str], lines: Deque[str], context: str) -> CheckConstraint:
        code: List[str] = []
        enforced_seen = False
        while lines:
            line = lines.popleft()
            if _CHECK_END_PATTERN.match(line):
                enforced_seen = True
                break
            code.append(line.strip())
        while enforced_seen and lines:
            line = lines.popleft()
            if not _CONSTRAINT_TRAILER_PATTERN.match(line) or line.strip().startswith("ON "):
                raise MalformedSubclause(f"I don't understand {line.strip()!r} in an {context} CHECK section")
        condition = " ".join(code).strip()
        if not condition:
            raise MalformedSubclause(f"Empty CHECK condition in {context}")
        return CheckConstraint(condition=condition, name=name)

    def _handle_restart_identity(self, m, lines: Deque[str], statement: Statement) -> None:
        table = self._table(m.group("schema"), m.group("table"), statement)
        column = table.column(m.group("column"))
        if column is None or column.identity is None:
            raise UnrecognizedStatement(
                f"Column {m.group('schema')}.{m.group('table')}.{m.group('column')} is not an identity column "
                f"(line {statement.line_number})")
        column.identity.start = int(m.group("value"))
        _expect_end(lines, statement, "ALTER TABLE ... RESTART WITH")

    def _handle_create_index(self, m, lines: Deque[str], statement: Statement) -> None:
        table = self._table(m.group("schema"), m.group("table"), statement)
        context = f"CREATE INDEX {m.group('index_schema')}.{m.group('name')}"
        # The index schema does not exist in PostgreSQL: indexes live in their table's schema
        index = Index(name=m.group("name"), index_schema=m.group("index_schema"),
                      unique=m.group("unique") is not None)
        index.columns = _parse_column_list(lines, context, with_direction=True)
        if lines:
            include = _INCLUDE_PATTERN.match(lines[0])
            if include:
                lines.popleft()
                lines.appendleft(include.group("rest"))
                index.include_columns = [c.name for c in _parse_column_list(lines, f"{context} INCLUDE")]
        while lines:
            line = lines.popleft()
            if not _INDEX_TRAILER_PATTERN.match(line):
                raise MalformedSubclause(f"I don't understand {line.strip()!r} in a {context} section")
        table.indexes[index.name] = index

    def _handle_comment_column(self, m, lines: Deque[str], statement: Statement) -> None:
        schema_name, table_name, column_name = m.group("schema"), m.group("table"), m.group("column")
        text = _slurp_comment(m.group("text"), lines)
        table = self.catalog.find_table(schema_name, table_name)
        if table is None:
            # DB2 uses COMMENT ON COLUMN for views as well
            self.catalog.schema(schema_name).view_column_comments[(table_name, column_name)] = text
            return
        column = table.column(column_name)
        if column is None:
            raise UnrecognizedStatement(
                f"Column {schema_name}.{table_name}.{column_name} has not been declared (line {statement.line_number})")
        column.comment = text

    def _handle_comment_table(self, m, lines: Deque[str], statement: Statement) -> None:
        schema_name, table_name = m.group("schema"), m.group("table")
        text = _slurp_comment(m.group("text"), lines)
        table = self.catalog.find_table(schema_name, table_name)
        if table is None:
            self.catalog.schema(schema_name).view_comments[table_name] = text
        else:
            table.comment = text

    def _handle_create_domain(self, m, lines: Deque[str], statement: Statement) -> None:
        # Only a distinct type over a single SYSIBM base type: that is a domain in PostgreSQL
        base = m.group("base").replace('"', "").strip()
        schema = self.catalog.schema(m.group("schema"))
        schema.domains[m.group("name")] = Domain(name=m.group("name"), base_type=convert_db2_type(base))
        _expect_end(lines, statement, "CREATE DISTINCT TYPE")

    def _handle_set_schema(self, m, lines: Deque[str], statement: Statement) -> None:
        self.current_schema = m.group("schema")

    def _handle_set_path(self, m, lines: Deque[str], statement: Statement) -> None:
        self.current_path = m.group("path")

    def _handle_create_view(self, m, lines: Deque[str], statement: Statement) -> None:
        # Dumped exactly as the user typed it: kept as a whole, in dump order
        schema = _object_name(m.group("schema")) or self.current_schema
        view = View(schema=schema, name=_object_name(m.group("name")),
                    statement=_slurp_statement(m.group("rest"), lines),
                    current_schema=self.current_schema, current_path=self.current_path)
        self.catalog.views.append(view)

    def _handle_create_trigger(self, m, lines: Deque[str], statement: Statement) -> None:
        schema = self.catalog.schema(_object_name(m.group("schema")) or self.current_schema)
        name = _object_name(m.group("name"))
        schema.triggers[name] = Trigger(name=name, statement=_slurp_statement(m.group("rest"), lines),
                                        current_schema=self.current_schema, current_path=self.current_path)

    def _handle_comment_trigger(self, m, lines: Deque[str], statement: Statement) -> None:
        schema = self.catalog.schema(m.group("schema"))
        trigger = schema.triggers.get(m.group("name"))
        if trigger is None:
            raise UnrecognizedStatement(
                f"Trigger {m.group('schema')}.{m.group('name')} has not been declared (line {statement.line_number})")
        trigger.comment = _slurp_comment(m.group("text"), lines)

    def _handle_create_function(self, m, lines: Deque[str], statement: Statement) -> None:
        schema = self.catalog.schema(_object_name(m.group("schema")) or self.current_schema)
        name = _object_name(m.group("name"))
        key = name
        overload = 1
        while key in schema.functions:
            overload += 1
            key = f"{name}_{overload}"
        if key != name:
            log.warning("Function %s.%s is overloaded; definition %d kept as a separate body",
                        schema.name, name, overload)
        schema.functions[key] = Function(name=name, statement=_slurp_statement(m.group("rest"), lines),
                                         current_schema=self.current_schema, current_path=self.current_path)


def parse_dump(lines: Iterable[str], catalog: Optional[Catalog] = None) -> Catalog:
    """Parse the decoded lines of a DB2 dump into a Catalog."""
    return Db2DdlParser(catalog).parse(StatementReader(lines))
