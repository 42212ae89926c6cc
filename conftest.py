"""
Shared fixtures: a small but complete db2look dump.
"""

import pytest

from db2_ddl_parser import parse_dump

SAMPLE_DUMP = """\
-- This CLP file was created using DB2LOOK Version "11.5"
-- Timestamp: 2024-03-01 10:00:00
-- Database Name: SAMPLE

CONNECT TO SAMPLE;

CREATE BUFFERPOOL "BP8K" SIZE 1000 PAGESIZE 8192;

CREATE REGULAR TABLESPACE "USERSPACE1" IN DATABASE PARTITION GROUP IBMDEFAULTGROUP
      PAGESIZE 4096 MANAGED BY DATABASE
      USING (FILE '/db2/data/userspace1.dat' 2560,
             FILE '/db2/data/userspace1b.dat' 2560)
      EXTENTSIZE 32
      PREFETCHSIZE AUTOMATIC
      BUFFERPOOL IBMDEFAULTBP
      OVERHEAD 7.500000
      TRANSFERRATE 0.060000
      AUTORESIZE YES
      NO FILE SYSTEM CACHING;

CREATE ROLE "APPADMIN";
COMMENT ON ROLE "APPADMIN" IS 'Application administrators';

CREATE SCHEMA "APP" AUTHORIZATION "DB2INST1";

CREATE SEQUENCE "S"."SEQ1" AS INTEGER
    MINVALUE 1 MAXVALUE 100
    START WITH 1 INCREMENT BY 1
    CACHE 5 CYCLE NO ORDER;

ALTER SEQUENCE "S"."SEQ1" RESTART WITH 0;

CREATE DISTINCT TYPE "APP"."MONEY" AS "SYSIBM"."DECIMAL"(9,2) WITH COMPARISONS;

------------------------------------------------
-- DDL Statements for Table "APP"."CUSTOMERS"
------------------------------------------------

CREATE TABLE "APP"."CUSTOMERS"  (
          "ID" INTEGER NOT NULL ,
          "NAME" VARCHAR(100) NOT NULL ,
          "BALANCE" "APP"."MONEY" )
         IN "USERSPACE1" ;

ALTER TABLE "APP"."CUSTOMERS"
    ADD PRIMARY KEY
        ("ID");

CREATE TABLE "APP"."ORDERS"  (
          "ID" INTEGER NOT NULL GENERATED BY DEFAULT AS IDENTITY (
            START WITH +1
            INCREMENT BY +1
            MINVALUE +1
            MAXVALUE +2147483647
            NO CYCLE
            CACHE 20
            NO ORDER ) ,
          "CUSTOMER_ID" INTEGER NOT NULL ,
          "STATUS" CHAR(1) NOT NULL WITH DEFAULT 'N' ,
          "AMOUNT" DECIMAL(9,2) WITH DEFAULT ,
          "CREATED" TIMESTAMP NOT NULL WITH DEFAULT CURRENT TIMESTAMP ,
          "NOTES" CLOB(1M) LOGGED NOT COMPACT ,
          "TOTAL" DECIMAL(11,2) GENERATED ALWAYS AS (AMOUNT * 1.2) )
         IN "USERSPACE1" INDEX IN "IDXSPACE" ;

COMMENT ON TABLE "APP"."ORDERS" IS 'Customer orders';
COMMENT ON COLUMN "APP"."ORDERS"."STATUS" IS 'N=new,
P=paid';

ALTER TABLE "APP"."ORDERS"
    ADD CONSTRAINT "PK_ORDERS" PRIMARY KEY
        ("ID");

ALTER TABLE "APP"."ORDERS"
    ADD CONSTRAINT "FK_CUST" FOREIGN KEY
        ("CUSTOMER_ID")
    REFERENCES "APP"."CUSTOMERS"
        ("ID")
    ON DELETE CASCADE
    ON UPDATE NO ACTION
    ENFORCED
    ENABLE QUERY OPTIMIZATION;

ALTER TABLE "APP"."ORDERS"
    ADD CONSTRAINT "CK_STATUS" CHECK
        (STATUS IN ('N', 'P', 'D'))
    ENFORCED
    ENABLE QUERY OPTIMIZATION;

CREATE UNIQUE INDEX "APP"."IX_ORDERS_STATUS" ON "APP"."ORDERS"
        ("STATUS" ASC,
         "CREATED" DESC)
        INCLUDE ("AMOUNT" )
        ALLOW REVERSE SCANS
        COMPRESS NO;

ALTER TABLE "APP"."ORDERS" ALTER COLUMN "ID" RESTART WITH 1042;

SET CURRENT SCHEMA = "APP";
SET CURRENT PATH = "SYSIBM","SYSFUN","SYSPROC","SYSIBMADM","APP";

CREATE VIEW V_OPEN AS SELECT ID, UCASE(STATUS) AS S FROM ORDERS WHERE STATUS = 'N';

COMMENT ON TABLE "APP"."V_OPEN" IS 'Orders not paid yet';

CREATE TRIGGER APP.TRG_ORDERS AFTER INSERT ON APP.ORDERS
  REFERENCING NEW AS N
  FOR EACH ROW
  UPDATE APP.CUSTOMERS SET NAME = NAME WHERE ID = N.CUSTOMER_ID;

COMMENT ON TRIGGER "APP"."TRG_ORDERS" IS 'touches the customer';

CREATE FUNCTION APP.ADD_ONE (X INTEGER)
  RETURNS INTEGER
  LANGUAGE SQL
BEGIN ATOMIC
  DECLARE Y INTEGER;
  SET Y = X + 1;
  RETURN Y;
END;

SET CURRENT SCHEMA = "DB2INST1";

GRANT SELECT ON TABLE "APP"."ORDERS" TO USER "BOB";

COMMIT WORK;

CONNECT RESET;

TERMINATE;
"""


@pytest.fixture
def sample_lines():
    return SAMPLE_DUMP.split("\n")


@pytest.fixture
def sample_catalog(sample_lines):
    return parse_dump(sample_lines)
