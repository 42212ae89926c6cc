#!/usr/bin/env python3
"""
DB2-to-PostgreSQL DDL Migrator
==============================

Converts a DB2 schema dump (as produced by `db2look -e`) into PostgreSQL DDL.

Output directory contents:
  before.sql     objects to create before loading the data
  after.sql      keys, indexes, foreign keys and identities, after the data load
  unsure.sql     views, CHECK constraints, functions and triggers; expect to edit it
  TABLEDESC      column manifest for the data loading scripts
  export.db2     DB2 EXPORT script (only with --db2-database/--db2-user/--db2-password)

Nothing is executed against a database. Any statement of the dump that is not
understood stops the conversion before any file is written.

Requirements:
  pip install sqlglot
"""

from __future__ import annotations

import argparse
import codecs
import datetime
import logging
import os
import sys
import textwrap
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from db2_catalog import Catalog, Db2ToPgError
from db2_ddl_parser import Db2DdlParser
from db2_statement_reader import StatementReader
from pg_ddl_emitter import DdlScripts, PgDdlEmitter
from pg_name_resolver import NameResolver, Rename

# =============================================================================
# Module-level logger, configured in main()
# =============================================================================
log = logging.getLogger("db2_to_pg_migrator")

# =============================================================================
# Input encodings, tried in order when none is given
# =============================================================================
_BOMS: Tuple[Tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)
FALLBACK_ENCODING = "iso8859-15"


class WarningCollector(logging.Handler):
    """Keeps every WARNING+ message of a run for the report."""

    def __init__(self):
        super().__init__(logging.WARNING)
        self.messages: List[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


# #############################################################################
#  SECTION 1: Input
# #############################################################################

def guess_encoding(raw: bytes) -> str:
    """Pick the encoding of a dump: BOM if any, else UTF-8 if it decodes, else ISO-8859-15."""
    for bom, encoding in _BOMS:
        if raw.startswith(bom):
            return encoding
    try:
        raw.decode("utf-8")
    except UnicodeDecodeError:
        return FALLBACK_ENCODING
    return "utf-8"


def read_dump_lines(path: str, encoding: Optional[str] = None) -> List[str]:
    """Read and decode a dump file into lines (line endings removed)."""
    raw = Path(path).read_bytes()
    if encoding is None:
        encoding = guess_encoding(raw)
        log.info("  Input encoding: %s (guessed)", encoding)
    else:
        log.info("  Input encoding: %s", encoding)
    text = raw.decode(encoding)
    return text.split("\n")


# #############################################################################
#  SECTION 2: Side artifacts for the data load
# #############################################################################

def format_table_manifest(catalog: Catalog) -> str:
    """TABLEDESC: one SCHEMA<TAB>TABLE line per table, then one line per column."""
    lines: List[str] = []
    for schema, table in catalog.iter_tables():
        lines.append(f"{schema.name}\t{table.name}\n")
        for column in sorted(table.columns, key=lambda c: c.position):
            nullability = "NOTNULL" if column.not_null else "NULL"
            lines.append(f"\t{column.name}\t{column.orig_type}\t{nullability}\n")
    return "".join(lines)


def format_export_script(catalog: Catalog, database: str, user: str, password: str) -> str:
    """DB2 command script exporting every table to <schema>.<table>.del, LOBs in separate files."""
    lines = [f"connect to {database} user {user} using '{password}'\n"]
    for schema, table in catalog.iter_tables():
        target = f"{schema.name}.{table.name}"
        lines.append(
            f"EXPORT TO {target}.del of del LOBS to . MODIFIED BY LOBSINFILE "
            f"messages {target}.log SELECT * FROM \"{schema.name}\".\"{table.name}\"\n"
        )
    return "".join(lines)


def write_outputs(output_dir: str, scripts: DdlScripts, catalog: Catalog,
                  export_credentials: Optional[Tuple[str, str, str]] = None) -> List[Path]:
    """Write the three scripts and the side artifacts. Returns the written paths."""
    out_path = Path(output_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    files = {
        "before.sql": scripts.before,
        "after.sql": scripts.after,
        "unsure.sql": scripts.unsure,
        "TABLEDESC": format_table_manifest(catalog),
    }
    if export_credentials is not None:
        files["export.db2"] = format_export_script(catalog, *export_credentials)

    written: List[Path] = []
    for name, content in files.items():
        file_path = out_path / name
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(content)
        log.info("  [FILE] %s", file_path)
        written.append(file_path)
    return written


# #############################################################################
#  SECTION 3: Reporting
# #############################################################################

def write_report(log_dir: str, stats: Dict, elapsed: float, input_file: str,
                 renames: List[Rename], warnings: List[str]) -> Path:
    """Write the conversion report: object counts, renames and warnings."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    report_path = Path(log_dir) / f"conversion_report_{timestamp}.txt"

    lines = []
    lines.append("=" * 80)
    lines.append("DB2-TO-POSTGRESQL DDL CONVERSION REPORT")
    lines.append("=" * 80)
    lines.append(f"Timestamp     : {datetime.datetime.now().isoformat()}")
    lines.append(f"Input dump    : {input_file}")
    lines.append(f"Total elapsed : {elapsed:.2f}s")
    lines.append("")

    lines.append("-" * 80)
    lines.append("OBJECTS")
    lines.append("-" * 80)
    for key in ("tablespaces", "roles", "schemas", "sequences", "domains", "tables",
                "primary_keys", "unique_constraints", "indexes", "foreign_keys", "identities",
                "check_constraints", "views", "functions", "triggers"):
        lines.append(f"  {key:<20}: {stats.get(key, 0)}")
    lines.append(f"  {'unparsable (unsure)':<20}: {stats.get('probe_failures', 0)}")
    lines.append("")

    if renames:
        lines.append("-" * 80)
        lines.append(f"RENAMES ({len(renames)} total)")
        lines.append("-" * 80)
        lines.append("schema\tkind\toriginal\tchosen")
        for rename in renames:
            lines.append(f"{rename.schema}\t{rename.kind}\t{rename.original}\t{rename.chosen}")
        lines.append("")

    if warnings:
        lines.append("-" * 80)
        lines.append(f"WARNINGS ({len(warnings)} total)")
        lines.append("-" * 80)
        for message in warnings:
            lines.append(message.replace("\n", " | "))
        lines.append("")
    else:
        lines.append("No warnings.")
        lines.append("")

    lines.append("=" * 80)
    lines.append("END OF REPORT")
    lines.append("=" * 80)

    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path


def setup_logging(log_dir: str, log_level: str = "INFO") -> Path:
    """Configure dual logging: console (INFO+) and file (DEBUG+)."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = Path(log_dir) / f"conversion_{timestamp}.log"

    log.setLevel(logging.DEBUG)
    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    log.addHandler(fh)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    ch.setFormatter(logging.Formatter("%(levelname)-8s  %(message)s"))
    log.addHandler(ch)

    log.info("Log file: %s", log_file)
    return log_file


# #############################################################################
#  SECTION 4: Main
# #############################################################################

def convert(lines: List[str], with_tablespaces: bool = False) -> Tuple[Catalog, DdlScripts, Dict, List[Rename]]:
    """Parse dump lines and emit the scripts. Raises Db2ToPgError on anything not understood."""
    stats: Dict = {}

    log.info("=" * 72)
    log.info("PHASE 1: PARSING THE DB2 DUMP")
    log.info("=" * 72)
    parser = Db2DdlParser()
    catalog = parser.parse(StatementReader(lines))
    log.info("  %d statement(s) parsed, %d schema(s), %d table(s), %d view(s)",
             sum(parser.stats.values()), len(catalog.schemas),
             sum(1 for _ in catalog.iter_tables()), len(catalog.views))

    log.info("=" * 72)
    log.info("PHASE 2: GENERATING POSTGRESQL DDL")
    log.info("=" * 72)
    resolver = NameResolver(catalog)
    emitter = PgDdlEmitter(catalog, resolver, with_tablespaces=with_tablespaces)
    scripts = emitter.emit()
    stats.update(emitter.stats)
    log.info("  %d rename(s) to avoid name conflicts", len(resolver.renames))
    return catalog, scripts, stats, resolver.renames


def main(argv: Optional[List[str]] = None) -> None:
    run_start = time.time()

    parser = argparse.ArgumentParser(
        description="DB2-to-PostgreSQL DDL Migrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Converts a db2look dump into three PostgreSQL scripts:
              before.sql (run before loading data), after.sql (run after),
              unsure.sql (views, checks, functions, triggers: review it)

            Examples:
              python db2_to_pg_ddl_migrator.py -f db2look.sql -o pg_schema/

              # Also create the tablespaces (probably not a good idea):
              python db2_to_pg_ddl_migrator.py -f db2look.sql -o pg_schema/ --tablespaces

              # Also write a DB2 export script for the data:
              python db2_to_pg_ddl_migrator.py -f db2look.sql -o pg_schema/ \\
                  --db2-database SAMPLE --db2-user db2inst1 --db2-password pass
        """),
    )
    parser.add_argument("-f", "--file", required=True, help="DB2 SQL dump file (db2look -e output)")
    parser.add_argument("-o", "--output-dir", required=True, help="Directory receiving the generated files")
    parser.add_argument("--tablespaces", action="store_true",
                        help="Produce the CREATE TABLESPACE statements and TABLESPACE clauses")
    parser.add_argument("--encoding", default=None,
                        help="Encoding of the dump file (default: guessed, UTF-8 or ISO-8859-15)")
    parser.add_argument("--db2-database", default=None, help="DB2 database name for export.db2 (or DB2_DATABASE env)")
    parser.add_argument("--db2-user", default=None, help="DB2 user name for export.db2 (or DB2_USER env)")
    parser.add_argument("--db2-password", default=None, help="DB2 password for export.db2 (or DB2_PASSWORD env)")
    parser.add_argument("--log-dir", default="conversion_logs",
                        help="Directory for logs and reports (default: conversion_logs)")
    parser.add_argument("--log-level", default="INFO", choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    args = parser.parse_args(argv)

    previous_handlers = list(log.handlers)
    setup_logging(args.log_dir, args.log_level)
    collector = WarningCollector()
    log.addHandler(collector)
    try:
        run(args, collector, run_start)
    finally:
        # Leave the shared logger as it was found
        for handler in [h for h in log.handlers if h not in previous_handlers]:
            log.removeHandler(handler)
            handler.close()


def run(args: argparse.Namespace, collector: WarningCollector, run_start: float) -> None:
    """Convert the dump named by the parsed options. Exits with status 1 on a fatal error."""
    log.info("=" * 72)
    log.info("DB2-TO-POSTGRESQL DDL MIGRATOR — STARTED")
    log.info("=" * 72)
    log.info("Input: %s", args.file)
    log.info("Output directory: %s", args.output_dir)

    db2_database = args.db2_database or os.environ.get("DB2_DATABASE")
    db2_user = args.db2_user or os.environ.get("DB2_USER")
    db2_password = args.db2_password or os.environ.get("DB2_PASSWORD")
    export_credentials = None
    if db2_database and db2_user and db2_password:
        export_credentials = (db2_database, db2_user, db2_password)
    elif db2_database or db2_user or db2_password:
        log.warning("DB2 database, user and password are all needed for export.db2. It will not be written")

    try:
        lines = read_dump_lines(args.file, args.encoding)
        catalog, scripts, stats, renames = convert(lines, with_tablespaces=args.tablespaces)
    except OSError as e:
        log.error("FATAL: cannot read %s: %s", args.file, e)
        sys.exit(1)
    except UnicodeDecodeError as e:
        log.error("FATAL: %s is not valid %s: %s", args.file, args.encoding, e)
        sys.exit(1)
    except Db2ToPgError as e:
        log.error("FATAL: %s", e)
        log.error("Nothing has been written to %s", args.output_dir)
        sys.exit(1)

    log.info("=" * 72)
    log.info("PHASE 3: WRITING FILES")
    log.info("=" * 72)
    write_outputs(args.output_dir, scripts, catalog, export_credentials)

    elapsed = time.time() - run_start
    report_path = write_report(args.log_dir, stats, elapsed, args.file, renames, collector.messages)

    log.info("=" * 72)
    log.info("DB2-TO-POSTGRESQL DDL MIGRATOR — COMPLETE (%.1fs)", elapsed)
    log.info("  %d warning(s), %d rename(s)", len(collector.messages), len(renames))
    log.info("  Report: %s", report_path)
    log.info("=" * 72)


if __name__ == "__main__":
    main()
