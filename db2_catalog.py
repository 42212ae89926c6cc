"""
In-memory catalog of a parsed DB2 schema dump
=============================================

Typed records filled by db2_ddl_parser and read by pg_ddl_emitter.

Ownership only flows downwards (Catalog -> Schema -> Table -> Column /
constraint / Index). Nothing keeps a pointer back to its owner; where a record
needs to name another object it does so by schema and object name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union


# #############################################################################
#  Fatal errors
# #############################################################################

class Db2ToPgError(ValueError):
    """Base class for conditions that abort the conversion."""


class UnrecognizedStatement(Db2ToPgError):
    """A statement matches none of the known forms, or refers to an undeclared object."""


class MalformedSubclause(Db2ToPgError):
    """A line inside a multi-line statement does not have the expected shape."""


class UnknownDefaultType(Db2ToPgError):
    """WITH DEFAULT without a value on a type that has no known implicit default."""


# #############################################################################
#  Records
# #############################################################################

@dataclass
class Role:
    name: str
    comment: Optional[str] = None


@dataclass
class Tablespace:
    name: str
    paths: List[str] = field(default_factory=list)


@dataclass
class Sequence:
    name: str
    increment: int = 1
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    start: Optional[int] = None
    cache: Optional[int] = None
    cycle: bool = False
    restart_with: Optional[int] = None

    def resolved_restart(self) -> Optional[int]:
        """RESTART WITH value, never below MINVALUE (PostgreSQL refuses it)."""
        if self.restart_with is None:
            return None
        if self.min_value is not None and self.restart_with < self.min_value:
            return self.min_value
        return self.restart_with


@dataclass
class Identity:
    always: bool = False
    start: Optional[int] = None
    increment: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cache: Optional[int] = None
    cycle: bool = False
    order: bool = False


@dataclass
class Column:
    name: str
    type: str
    orig_type: str
    position: int
    not_null: bool = False
    # None: no default. "": WITH DEFAULT without a value (type dependent default).
    default: Optional[str] = None
    identity: Optional[Identity] = None
    comment: Optional[str] = None


@dataclass
class PrimaryKey:
    columns: List[str]
    name: Optional[str] = None
    kind = "pk"


@dataclass
class UniqueConstraint:
    columns: List[str]
    name: Optional[str] = None
    kind = "unique"


@dataclass
class ForeignKey:
    columns: List[str]
    ref_schema: str
    ref_table: str
    ref_columns: List[str]
    name: Optional[str] = None
    on_delete: Optional[str] = None
    on_update: Optional[str] = None
    enforced: bool = True
    kind = "fk"


@dataclass
class CheckConstraint:
    condition: str
    name: Optional[str] = None
    kind = "check"


Constraint = Union[UniqueConstraint, ForeignKey, CheckConstraint]


@dataclass
class IndexColumn:
    name: str
    direction: Optional[str] = None  # ASC / DESC as written in the dump


@dataclass
class Index:
    name: str
    index_schema: str
    unique: bool = False
    columns: List[IndexColumn] = field(default_factory=list)
    include_columns: List[str] = field(default_factory=list)


@dataclass
class Table:
    name: str
    columns: List[Column] = field(default_factory=list)
    primary_key: Optional[PrimaryKey] = None
    constraints: List[Constraint] = field(default_factory=list)
    indexes: Dict[str, Index] = field(default_factory=dict)
    comment: Optional[str] = None
    tablespace: Optional[str] = None
    index_tablespace: Optional[str] = None
    long_tablespace: Optional[str] = None

    def add_column(self, name: str, db2_type: str, pg_type: str, **attrs) -> Column:
        column = Column(name=name, type=pg_type, orig_type=db2_type,
                        position=len(self.columns) + 1, **attrs)
        self.columns.append(column)
        return column

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def constraints_of(self, kind: str) -> List[Constraint]:
        return [c for c in self.constraints if c.kind == kind]


@dataclass
class Domain:
    name: str
    base_type: str


@dataclass
class View:
    schema: str
    name: str
    statement: str
    current_schema: str = ""
    current_path: str = ""


@dataclass
class Trigger:
    name: str
    statement: str
    current_schema: str = ""
    current_path: str = ""
    comment: Optional[str] = None


@dataclass
class Function:
    name: str
    statement: str
    current_schema: str = ""
    current_path: str = ""


@dataclass
class Schema:
    name: str
    authorization: Optional[str] = None
    sequences: Dict[str, Sequence] = field(default_factory=dict)
    domains: Dict[str, Domain] = field(default_factory=dict)
    tables: Dict[str, Table] = field(default_factory=dict)
    triggers: Dict[str, Trigger] = field(default_factory=dict)
    functions: Dict[str, Function] = field(default_factory=dict)
    # DB2 dumps COMMENT ON TABLE / COLUMN for views as well
    view_comments: Dict[str, str] = field(default_factory=dict)
    view_column_comments: Dict[Tuple[str, str], str] = field(default_factory=dict)


@dataclass
class Catalog:
    schemas: Dict[str, Schema] = field(default_factory=dict)
    roles: Dict[str, Role] = field(default_factory=dict)
    tablespaces: Dict[str, Tablespace] = field(default_factory=dict)
    views: List[View] = field(default_factory=list)

    def schema(self, name: str) -> Schema:
        """Return schema `name`, creating it on first reference."""
        if name not in self.schemas:
            self.schemas[name] = Schema(name=name)
        return self.schemas[name]

    def role(self, name: str) -> Role:
        if name not in self.roles:
            self.roles[name] = Role(name=name)
        return self.roles[name]

    def find_table(self, schema: str, table: str) -> Optional[Table]:
        sobj = self.schemas.get(schema)
        if sobj is None:
            return None
        return sobj.tables.get(table)

    def iter_tables(self):
        """Yield (schema, table) pairs sorted by schema then table name."""
        for schema_name in sorted(self.schemas):
            sobj = self.schemas[schema_name]
            for table_name in sorted(sobj.tables):
                yield sobj, sobj.tables[table_name]
