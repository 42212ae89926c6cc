"""
Tests for the PostgreSQL DDL emitter in pg_ddl_emitter.py.
Run with:  python -m pytest test_emitter.py -v
"""

import logging
import re

import pytest

import pg_ddl_emitter as mod
from db2_ddl_parser import parse_dump
from pg_name_resolver import NameResolver


def _ws(s: str) -> str:
    """Collapse whitespace so assertions are not sensitive to extra spaces."""
    return " ".join(s.split()).strip()


def _emit(text: str, **kwargs) -> mod.DdlScripts:
    return mod.emit_scripts(parse_dump(text.split("\n")), **kwargs)


@pytest.fixture
def sample_scripts(sample_catalog):
    return mod.PgDdlEmitter(sample_catalog).emit()


# ===========================================================================
# 1. before.sql
# ===========================================================================
class TestBefore:
    def test_starts_with_encoding(self, sample_scripts):
        assert sample_scripts.before.startswith("set client_encoding to UTF8;\n")
        assert sample_scripts.after.startswith("set client_encoding to UTF8;\n")

    def test_roles_and_schemas(self, sample_scripts):
        before = sample_scripts.before
        assert "CREATE ROLE appadmin;" in before
        assert "COMMENT ON ROLE appadmin IS 'Application administrators';" in before
        assert "CREATE SCHEMA app AUTHORIZATION db2inst1;" in before
        assert before.index("CREATE ROLE") < before.index("CREATE SCHEMA") < before.index("CREATE TABLE")

    def test_sequence_with_six_attributes(self, sample_scripts):
        block = re.search(r"CREATE SEQUENCE s\.seq1\n(.*?);", sample_scripts.before, re.DOTALL).group(1)
        assert [line.strip() for line in block.split("\n")] == [
            "INCREMENT BY 1", "MINVALUE 1", "MAXVALUE 100", "START WITH 1", "CACHE 5", "CYCLE"]

    def test_restart_clamped_to_minvalue(self, sample_catalog, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        scripts = mod.PgDdlEmitter(sample_catalog).emit()
        assert "ALTER SEQUENCE s.seq1 RESTART WITH 1;" in scripts.before
        assert any("RESTART WITH 0" in r.getMessage() for r in caplog.records)

    def test_domain(self, sample_scripts):
        assert "CREATE DOMAIN app.money AS DECIMAL(9,2);" in sample_scripts.before

    def test_table_columns(self, sample_scripts):
        ddl = re.search(r"CREATE TABLE app\.orders \(\n(.*?)\n\);", sample_scripts.before, re.DOTALL).group(1)
        assert ddl.split(",\n") == [
            "  id INTEGER NOT NULL",
            "  customer_id INTEGER NOT NULL",
            "  status CHAR(1) DEFAULT 'N' NOT NULL",
            "  amount DECIMAL(9,2) DEFAULT 0",
            "  created TIMESTAMP DEFAULT current_timestamp NOT NULL",
            "  notes varchar(1048576)",
            "  total DECIMAL(11,2) DEFAULT AMOUNT * 1.2",
        ]

    def test_table_comments(self, sample_scripts):
        assert "COMMENT ON TABLE app.orders IS 'Customer orders';" in sample_scripts.before
        assert "COMMENT ON COLUMN app.orders.status IS 'N=new,\nP=paid';" in sample_scripts.before

    def test_no_tablespaces_by_default(self, sample_scripts):
        assert "TABLESPACE" not in sample_scripts.before
        assert "TABLESPACE" not in sample_scripts.after

    def test_tablespaces_when_enabled(self, sample_catalog):
        scripts = mod.PgDdlEmitter(sample_catalog, with_tablespaces=True).emit()
        assert "CREATE TABLESPACE userspace1 LOCATION '/db2/data/userspace1.dat';" in scripts.before
        assert "\nTABLESPACE userspace1;" in scripts.before
        assert "ADD CONSTRAINT pk_orders PRIMARY KEY (id) USING INDEX TABLESPACE idxspace;" in scripts.after

    def test_tablespace_without_container_skipped(self, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        scripts = _emit('CREATE LARGE TABLESPACE "EMPTY"\n  PAGESIZE 4096;', with_tablespaces=True)
        assert "CREATE TABLESPACE" not in scripts.before
        assert any("EMPTY" in r.getMessage() for r in caplog.records)

    def test_oversized_clob_column_is_text(self, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        scripts = _emit('CREATE TABLE "S"."T"  (\n  "DOC" CLOB(2G) LOGGED NOT COMPACT )\n  IN "TS";')
        assert "CREATE TABLE s.t (\n  doc text\n);" in scripts.before
        assert any("CLOB(2G)" in r.getMessage() for r in caplog.records if r.levelno == logging.WARNING)


# ===========================================================================
# 2. Round trip of a table declaration
# ===========================================================================
class TestTableRoundTrip:
    def test_columns_preserved(self):
        columns = [
            ('"C1" SMALLINT NOT NULL', "c1 SMALLINT NOT NULL"),
            ('"C2" VARCHAR(30) WITH DEFAULT', "c2 VARCHAR(30) DEFAULT ''"),
            ('"C3" DATE NOT NULL WITH DEFAULT', "c3 DATE DEFAULT current_date NOT NULL"),
            ('"C4" TIME WITH DEFAULT', "c4 TIME DEFAULT current_time"),
            ('"C5" BLOB(10M)', "c5 bytea"),
            ('"C6" DOUBLE WITH DEFAULT 1.5', "c6 double precision DEFAULT 1.5"),
            ('"C7" LONG VARCHAR', "c7 text"),
        ]
        body = " ,\n".join("  " + src for src, _ in columns)
        scripts = _emit(f'CREATE TABLE "S"."T"  (\n{body} )\n  IN "TS";')
        ddl = re.search(r"CREATE TABLE s\.t \(\n(.*?)\n\);", scripts.before, re.DOTALL).group(1)
        assert [line.strip() for line in ddl.split(",\n")] == [expected for _, expected in columns]


# ===========================================================================
# 3. after.sql
# ===========================================================================
class TestAfter:
    def test_primary_keys(self, sample_scripts):
        assert "ALTER TABLE app.customers ADD PRIMARY KEY (id);" in sample_scripts.after
        assert "ALTER TABLE app.orders ADD CONSTRAINT pk_orders PRIMARY KEY (id);" in sample_scripts.after

    def test_unique_covering_index_split(self, sample_scripts):
        statements = [l for l in sample_scripts.after.split("\n") if "INDEX" in l and "ix_orders_status" in l]
        assert statements == [
            "CREATE UNIQUE INDEX ix_orders_status ON app.orders (status ASC, created DESC);",
            "CREATE INDEX ix_orders_status_cov1 ON app.orders (status ASC, created DESC, amount);",
        ]

    def test_non_unique_covering_index_flattened(self, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        scripts = _emit('CREATE TABLE "S"."T"  (\n  "A" INTEGER ,\n  "B" INTEGER ,\n  "C" INTEGER );\n'
                        'CREATE INDEX "S"."I" ON "S"."T"\n  ("A" ASC,\n   "B" ASC)\n  INCLUDE ("C" );')
        statements = [l for l in scripts.after.split("\n") if l.startswith("CREATE") and "INDEX" in l]
        assert statements == ["CREATE INDEX i ON s.t (a ASC, b ASC, c);"]
        assert any("covering index" in r.getMessage() for r in caplog.records)

    def test_foreign_key_not_valid(self, sample_scripts):
        assert ("ALTER TABLE app.orders ADD CONSTRAINT fk_cust FOREIGN KEY (customer_id) "
                "REFERENCES app.customers (id) ON DELETE CASCADE ON UPDATE NO ACTION NOT VALID;") in sample_scripts.after

    def test_unnamed_foreign_keys_on_same_columns(self):
        fk = ('ALTER TABLE "S"."T"\n  ADD FOREIGN KEY\n    ("B")\n  REFERENCES "S"."U"\n    ("ID")\n'
              "  ON DELETE CASCADE\n  ENFORCED;\n")
        scripts = _emit('CREATE TABLE "S"."T"  (\n  "A" INTEGER ,\n  "B" INTEGER );\n' + fk + fk)
        assert ("ALTER TABLE s.t ADD CONSTRAINT t_b_fkey FOREIGN KEY (b) "
                "REFERENCES s.u (id) ON DELETE CASCADE NOT VALID;") in scripts.after
        assert ("ALTER TABLE s.t ADD CONSTRAINT t_b_fkey1 FOREIGN KEY (b) "
                "REFERENCES s.u (id) ON DELETE CASCADE NOT VALID;") in scripts.after
        validations = [l for l in scripts.unsure.split("\n") if "VALIDATE CONSTRAINT" in l]
        assert validations == ["ALTER TABLE s.t VALIDATE CONSTRAINT t_b_fkey;",
                               "ALTER TABLE s.t VALIDATE CONSTRAINT t_b_fkey1;"]

    def test_identity_sequence(self, sample_scripts):
        after = sample_scripts.after
        assert _ws("CREATE SEQUENCE app.orders_id_seq INCREMENT BY 1 MINVALUE 1 MAXVALUE 2147483647 "
                   "START WITH 1042 CACHE 20 NO CYCLE OWNED BY app.orders.id;") in _ws(after)
        assert "ALTER TABLE app.orders ALTER COLUMN id SET DEFAULT nextval('app.orders_id_seq');" in after
        assert "SELECT setval('app.orders_id_seq', (SELECT max(id)::bigint FROM app.orders));" in after

    def test_identities_after_indexes(self, sample_scripts):
        after = sample_scripts.after
        assert after.index("CREATE UNIQUE INDEX") < after.index("NOT VALID") < after.index("orders_id_seq")

    def test_order_identity_warns(self, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        _emit('CREATE TABLE "S"."T"  (\n  "ID" INTEGER NOT NULL GENERATED ALWAYS AS IDENTITY (\n'
              "    START WITH +1\n    ORDER ) );")
        messages = [r.getMessage() for r in caplog.records]
        assert any("ORDER" in m for m in messages)
        assert any("GENERATED ALWAYS" in m for m in messages)


# ===========================================================================
# 4. Name conflicts
# ===========================================================================
class TestNameConflicts:
    _DUMP = (
        'CREATE SEQUENCE "S"."X" AS INTEGER\n  MINVALUE 1 MAXVALUE 10\n  START WITH 1 INCREMENT BY 1\n'
        "  CACHE 2 NO CYCLE NO ORDER;\n"
        'CREATE TABLE "S"."T"  (\n  "A" INTEGER NOT NULL ,\n  "B" INTEGER );\n'
        'ALTER TABLE "S"."T"\n  ADD CONSTRAINT "X" PRIMARY KEY\n    ("A");\n'
        'CREATE INDEX "S"."T" ON "S"."T"\n  ("B" ASC);\n'
        'CREATE INDEX "S"."X" ON "S"."T"\n  ("B" DESC);\n'
    )

    def test_renames_follow_resolution_order(self):
        catalog = parse_dump(self._DUMP.split("\n"))
        resolver = NameResolver(catalog)
        scripts = mod.PgDdlEmitter(catalog, resolver).emit()
        assert "CREATE SEQUENCE s.x\n" in scripts.before
        assert "ADD CONSTRAINT x_pk PRIMARY KEY (a);" in scripts.after
        assert "CREATE INDEX t_index ON s.t (b ASC);" in scripts.after
        assert "CREATE INDEX x_index ON s.t (b DESC);" in scripts.after
        assert [(r.original, r.chosen) for r in resolver.renames] == [
            ("x", "x_pk"), ("t", "t_index"), ("x", "x_index")]

    def test_output_is_reproducible(self):
        first = _emit(self._DUMP)
        second = _emit(self._DUMP)
        assert first == second


# ===========================================================================
# 5. unsure.sql
# ===========================================================================
class TestUnsure:
    def test_header(self, sample_scripts):
        lines = sample_scripts.unsure.split("\n")
        assert lines[0].startswith("-- ")
        assert "\\set ECHO errors" in lines
        assert "set client_encoding to UTF8;" in lines
        assert 'set search_path TO db2, "$user", public;' in lines

    def test_every_foreign_key_validated_once(self):
        scripts = _emit(
            'CREATE TABLE "S"."T"  (\n  "A" INTEGER ,\n  "B" INTEGER );\n'
            'ALTER TABLE "S"."T"\n  ADD CONSTRAINT "FK1" FOREIGN KEY\n    ("A")\n  REFERENCES "S"."U"\n    ("ID")\n'
            "  ON DELETE RESTRICT;\n"
            'ALTER TABLE "S"."T"\n  ADD FOREIGN KEY\n    ("B")\n  REFERENCES "S"."U"\n    ("ID");\n'
        )
        created = re.findall(r"ADD CONSTRAINT (\S+) FOREIGN KEY .* NOT VALID;", scripts.after)
        validated = re.findall(r"VALIDATE CONSTRAINT (\S+);", scripts.unsure)
        assert created == ["fk1", "t_b_fkey"]
        assert sorted(validated) == sorted(created)

    def test_check_constraint(self, sample_scripts):
        assert "ALTER TABLE app.orders ADD CONSTRAINT ck_status CHECK (STATUS IN ('N', 'P', 'D'));" \
            in sample_scripts.unsure

    def test_view_with_search_path(self, sample_scripts):
        unsure = sample_scripts.unsure
        expected = ("set search_path TO app, sysibm, sysfun, sysproc, sysibmadm, db2;\n"
                    "CREATE VIEW app.v_open AS SELECT ID, upper(STATUS) AS S FROM ORDERS WHERE STATUS = 'N';")
        assert expected in unsure
        assert "COMMENT ON VIEW app.v_open IS 'Orders not paid yet';" in unsure

    def test_function_wrapped(self, sample_scripts):
        unsure = sample_scripts.unsure
        assert "CREATE FUNCTION app.add_one AS\n$func$\n(X INTEGER)" in unsure
        assert "END\n$func$;" in unsure

    def test_trigger_wrapped(self, sample_scripts):
        unsure = sample_scripts.unsure
        assert "CREATE FUNCTION app.trg_orders_fn() RETURNS trigger LANGUAGE plpgsql AS\n$func$\n" in unsure
        assert "COMMENT ON FUNCTION app.trg_orders_fn() IS 'touches the customer';" in unsure
        assert "-- Add the CREATE TRIGGER too!" in unsure

    def test_unparsable_view_flagged(self, caplog):
        caplog.set_level(logging.WARNING, logger="db2_to_pg_migrator")
        scripts = _emit("CREATE VIEW S.BROKEN AS SELECT (A FROM T;")
        assert "-- WARNING: does not parse as PostgreSQL" in scripts.unsure
        assert any("S.BROKEN" in r.getMessage() for r in caplog.records)


class TestProbe:
    def test_valid_sql(self):
        assert mod.probe_postgres_syntax("SELECT a FROM t WHERE b IN (1, 2)") is None

    def test_invalid_sql(self):
        assert mod.probe_postgres_syntax("SELECT (a FROM t") is not None
