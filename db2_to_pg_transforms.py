"""
DB2 -> PostgreSQL type and expression conversion rules
======================================================

  - DB2 column types -> PostgreSQL types (BLOB, CLOB, DOUBLE, LONG VARCHAR)
  - implicit value of a bare WITH DEFAULT, per type family
  - best-effort textual rewrite of default expressions and view bodies
    (CURRENT DATE/TIMESTAMP, YEAR(), UCASE/LCASE, CHAR(), empty BLOB literal,
    ROW MOVEMENT clauses). Nothing here parses SQL; the output of
    try_fix_expression is a guess and is treated as such by the emitter.
  - PostgreSQL identifier protection (lower-casing, reserved words)
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from db2_catalog import Column, UnknownDefaultType

log = logging.getLogger("db2_to_pg_migrator")

# =============================================================================
# PostgreSQL reserved keywords (must be double-quoted when used as identifiers)
# =============================================================================
PG_RESERVED = frozenset({
    "all", "analyse", "analyze", "and", "any", "array", "as", "asc", "asymmetric",
    "authorization", "binary", "both", "case", "cast", "check", "collate", "collation",
    "column", "concurrently", "constraint", "create", "cross", "current_catalog",
    "current_date", "current_role", "current_schema", "current_time",
    "current_timestamp", "current_user", "default", "deferrable", "desc", "distinct",
    "do", "else", "end", "except", "false", "fetch", "for", "foreign", "freeze", "from",
    "full", "grant", "group", "having", "ilike", "in", "initially", "inner", "intersect",
    "into", "is", "isnull", "join", "lateral", "leading", "left", "like", "limit",
    "localtime", "localtimestamp", "natural", "not", "notnull", "null", "offset", "on",
    "only", "or", "order", "outer", "overlaps", "placing", "primary", "references",
    "returning", "right", "select", "session_user", "similar", "some", "symmetric",
    "table", "tablesample", "then", "to", "trailing", "true", "union", "unique", "user",
    "using", "variadic", "verbose", "when", "where", "window", "with",
})

# Maximum length accepted by PostgreSQL for varchar(n)
PG_VARCHAR_MAX = 10485760

_SIZE_MULTIPLIERS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}

_BLOB_PATTERN = re.compile(r"^BLOB\s*\(\s*\d+\s*[KMG]?\s*\)", re.IGNORECASE)
_CLOB_PATTERN = re.compile(r"^CLOB\s*\(\s*(\d+)\s*([KMG]?)\s*\)", re.IGNORECASE)
_USER_TYPE_PATTERN = re.compile(r'^"([^"]+?)\s*"\s*\.\s*"([^"]+?)\s*"$')

_NUMERIC_FAMILY = re.compile(r"^(?:SMALLINT|INT|BIGINT|DEC|NUMERIC|REAL|DOUBLE|DECFLOAT|FLOAT)", re.IGNORECASE)
_CHARACTER_FAMILY = re.compile(
    r"^(?:CHAR|GRAPHIC|VARCHAR|LONG VARCHAR|CLOB|VARGRAPHIC|LONG VARGRAPHIC|DBCLOB|VARBINARY|BINARY|BLOB)",
    re.IGNORECASE,
)
_DATE_FAMILY = re.compile(r"^DATE\b", re.IGNORECASE)
_TIMESTAMP_FAMILY = re.compile(r"^TIMESTAMP\b", re.IGNORECASE)
_TIME_FAMILY = re.compile(r"^TIME\b", re.IGNORECASE)

_ROW_MOVEMENT_PATTERN = re.compile(r"\s*WITH\s+(?:NO\s+)?ROW\s+MOVEMENT\b", re.IGNORECASE)
_EMPTY_BLOB_MARKER = '"SYSIBM"."BLOB"'


# #############################################################################
#  Identifiers
# #############################################################################

def normalize_identifier(name: str) -> str:
    """Lower-case a DB2 object name. '-' is not valid in an unquoted PG name and is dropped
    (the parser warns about such names once per dump)."""
    return name.replace("-", "").lower()


def quote_identifier(name: str) -> str:
    if name in PG_RESERVED:
        return f'"{name}"'
    return name


def pg_identifier(name: str) -> str:
    return quote_identifier(normalize_identifier(name))


def qualified_name(schema: str, name: str) -> str:
    return f"{pg_identifier(schema)}.{pg_identifier(name)}"


# #############################################################################
#  Types
# #############################################################################

def convert_db2_type(db2_type: str) -> str:
    """Convert a DB2 column type, as written in the dump, to PostgreSQL."""
    dt = db2_type.strip()
    # LOB options (LOGGED, COMPACT, ...) are dropped along with the LOB type
    if _BLOB_PATTERN.match(dt):
        return "bytea"
    clob = _CLOB_PATTERN.match(dt)
    if clob:
        size = int(clob.group(1)) * _SIZE_MULTIPLIERS[clob.group(2).upper()]
        if size > PG_VARCHAR_MAX:
            log.warning("%s holds up to %d characters, more than varchar accepts (%d). It becomes text",
                        dt, size, PG_VARCHAR_MAX)
            return "text"
        return f"varchar({size})"
    user_type = _USER_TYPE_PATTERN.match(dt)
    if user_type:
        # distinct types become domains of the same name
        return qualified_name(user_type.group(1), user_type.group(2))
    upper = dt.upper()
    if upper == "DOUBLE":
        return "double precision"
    if upper == "LONG VARCHAR":
        return "text"
    return dt


def find_default_default(db2_type: str) -> str:
    """SQL literal used by DB2 for WITH DEFAULT without a value."""
    if _NUMERIC_FAMILY.match(db2_type):
        return "0"
    if _CHARACTER_FAMILY.match(db2_type):
        return "''"
    if _DATE_FAMILY.match(db2_type):
        return "current_date"
    if _TIMESTAMP_FAMILY.match(db2_type):
        return "current_timestamp"
    if _TIME_FAMILY.match(db2_type):
        return "current_time"
    raise UnknownDefaultType(
        f"Unknown type {db2_type} when trying to find the implicit WITH DEFAULT value"
    )


# #############################################################################
#  Expressions
# #############################################################################

def _sub_outside_strings(pattern: str, repl: str, body: str, flags: int = 0) -> str:
    """Run re.sub only on parts outside single-quoted strings."""
    parts = re.split(r"('(?:[^']|'')*')", body)
    compiled = re.compile(pattern, flags)
    for i in range(0, len(parts), 2):
        parts[i] = compiled.sub(repl, parts[i])
    return "".join(parts)


def try_fix_expression(data: str) -> str:
    """Brutal regexp corrections for default values and view bodies."""
    if _EMPTY_BLOB_MARKER in data:
        # empty BLOB literal, '' is cast implicitly by PostgreSQL
        return "''"
    data = re.sub(r"\r?\n", " ", data)
    data = _sub_outside_strings(r"\bcurrent\s+date\b", "current_date", data, re.IGNORECASE)
    data = _sub_outside_strings(r"\bcurrent\s+timestamp\b", "current_timestamp", data, re.IGNORECASE)
    data = _sub_outside_strings(r"\byear\s*\(", "extract (YEAR FROM ", data, re.IGNORECASE)
    data = _sub_outside_strings(r"\bUCASE\s*\(", "upper(", data, re.IGNORECASE)
    data = _sub_outside_strings(r"\bLCASE\s*\(", "lower(", data, re.IGNORECASE)
    data = _sub_outside_strings(r"\bCHAR\s*\(", "to_char(", data, re.IGNORECASE)
    data = _ROW_MOVEMENT_PATTERN.sub("", data)
    return data


def generated_expression_default(display: str, column_name: str, mode: str, expression: str) -> str:
    """A GENERATED ... AS (expr) column becomes a plain DEFAULT expr."""
    if mode.upper() == "ALWAYS":
        log.warning("Column %s of table %s is GENERATED ALWAYS. This can't be done with PostgreSQL. "
                    "It will be a default value", column_name, display)
    log.warning("Column %s of table %s has a default value using an expression. This may not work, "
                "you may have to correct it manually, and write a trigger", column_name, display)
    return expression.strip()


def column_default_sql(column: Column) -> Optional[str]:
    """DEFAULT clause expression for a column, or None."""
    if column.default is None:
        return None
    if column.default == "":
        return find_default_default(column.orig_type)
    return try_fix_expression(column.default)
