"""
DB2 dump statement reader
=========================

Splits the decoded lines of a db2look dump into statements.

A statement normally ends on the first line ending with ';'. CREATE FUNCTION
bodies written as BEGIN ATOMIC ... END blocks contain semicolons of their own,
so once such a block has started the reader switches to ATOMIC_BODY mode and
only accepts a terminator after the closing END has been seen.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

log = logging.getLogger("db2_to_pg_migrator")

PLAIN = "plain"
ATOMIC_BODY = "atomic_body"

_TERMINATOR_PATTERN = re.compile(r";\s*$")
_FUNCTION_START_PATTERN = re.compile(r"CREATE.*FUNCTION", re.IGNORECASE)
_BEGIN_ATOMIC_PATTERN = re.compile(r"^\s*BEGIN\s+ATOMIC\b", re.IGNORECASE)
_END_KEYWORD_PATTERN = re.compile(r"\bEND;?\s*$", re.IGNORECASE)


@dataclass
class Statement:
    lines: List[str]
    line_number: int

    @property
    def first_line(self) -> str:
        return self.lines[0]


def strip_line_comment(line: str) -> str:
    """Drop the line ending and a trailing -- comment that is not inside a '...' literal."""
    line = line.rstrip("\r\n")
    pos = line.find("--")
    while pos != -1:
        if line[:pos].count("'") % 2 == 0:
            return line[:pos]
        pos = line.find("--", pos + 2)
    return line


class StatementReader:
    """Iterate over the statements of a dump, one list of raw lines per statement."""

    def __init__(self, lines: Iterable[str]):
        self._lines = iter(lines)
        self._line_number = 0
        self.mode = PLAIN

    def __iter__(self) -> Iterator[Statement]:
        while True:
            statement = self.read_statement()
            if statement is None:
                return
            yield statement

    def _next_line(self) -> Optional[str]:
        for raw in self._lines:
            self._line_number += 1
            line = strip_line_comment(raw)
            if line.strip():
                return line
        return None

    def read_statement(self) -> Optional[Statement]:
        statement: List[str] = []
        first_line_number = 0
        seen_end = False
        self.mode = PLAIN
        while True:
            line = self._next_line()
            if line is None:
                break
            if not statement:
                first_line_number = self._line_number
            statement.append(line)
            terminated = bool(_TERMINATOR_PATTERN.search(line))

            if self.mode == PLAIN and _FUNCTION_START_PATTERN.search(statement[0]) \
                    and any(_BEGIN_ATOMIC_PATTERN.search(s) for s in statement):
                self.mode = ATOMIC_BODY
                log.debug("Line %d: BEGIN ATOMIC function body, waiting for END", self._line_number)

            if self.mode == ATOMIC_BODY:
                if _END_KEYWORD_PATTERN.search(line):
                    seen_end = True
                if seen_end and terminated:
                    break
            elif terminated:
                break

        if not statement:
            return None
        statement[-1] = _TERMINATOR_PATTERN.sub("", statement[-1])
        if len(statement) > 1 and not statement[-1].strip():
            statement.pop()
        return Statement(lines=statement, line_number=first_line_number)


def read_statements(lines: Iterable[str]) -> Iterator[Statement]:
    return iter(StatementReader(lines))
