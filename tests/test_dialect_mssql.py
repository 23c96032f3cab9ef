"""
graindb - Declarative relational schema management
Copyright © 2025-2026 Ilona Tag

This file is part of graindb.

graindb is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as
published by the Free Software Foundation, either version 3 of
the License, or (at your option) any later version.

graindb is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with graindb. If not, see <https://www.gnu.org/licenses/>.

Contact: <https://github.com/elevata-labs/graindb>.
"""

import pytest

from sqlalchemy.dialects import mssql as sa_mssql

from graindb.rendering.dialects.mssql import MssqlDialect
from graindb.rendering.expr import COL, EQ, PARAM
from graindb.score.grain import Score
from graindb.score.model import Column
from graindb.score.types import BINARY, BOOLEAN, DATETIME, DECIMAL, INTEGER, STRING
from graindb.system.introspection import DbColumnInfo, _normalize_sa_columns
from tests._score_factory import build_shop_score


@pytest.fixture
def ddl(mssql_dialect):
  return mssql_dialect.ddl_generator()


@pytest.fixture
def shop():
  score = build_shop_score()
  grain = score.get_grain("shop")
  pv = grain.add_parameterized_view("by_city")
  pv.add_param("city", STRING)
  pv.add_table("customer", "c")
  pv.add_column("name", COL("name", "c"))
  pv.set_where(EQ(COL("city", "c"), PARAM("city")))
  score.finalize()
  return grain


def test_mssql_type_mapping():
  d = MssqlDialect()
  assert d.map_type("INTEGER") == "INT"
  assert d.map_type("STRING", max_length=40) == "NVARCHAR(40)"
  assert d.map_type("STRING") == "NVARCHAR(MAX)"
  assert d.map_type("DATETIME") == "DATETIME2"
  assert d.map_type("DECIMAL", precision=10, scale=2) == "DECIMAL(10,2)"
  assert d.map_type("BOOLEAN") == "BIT"
  assert d.map_type("BINARY") == "VARBINARY(MAX)"


def test_mssql_capabilities():
  caps = MssqlDialect().capabilities()
  assert caps["parameterized_views"] is True
  assert caps["materialized_views"] is False


def test_create_schema_is_guarded(ddl):
  (sql,) = ddl.create_schema("shop").statements
  assert sql.startswith("IF NOT EXISTS (SELECT 1 FROM sys.schemas WHERE name = 'shop')")
  assert "EXEC('CREATE SCHEMA \"shop\"');" in sql


def test_defaults_are_named_constraints(ddl, shop):
  (sql,) = ddl.create_table(shop.get_element("customer")).statements
  assert '"active" BIT CONSTRAINT "def_customer_active" DEFAULT 1 NOT NULL' in sql
  assert '"recversion" INT CONSTRAINT "def_customer_recversion" DEFAULT 1 NOT NULL' in sql
  assert '"city" NVARCHAR(30) NULL' in sql


def test_add_column_uses_add_keyword(ddl, shop):
  customer = shop.get_element("customer")
  (sql,) = ddl.add_column(customer, customer.get_column("city")).statements
  assert sql == 'ALTER TABLE "shop"."customer" ADD "city" NVARCHAR(30) NULL'


def test_changing_a_default_replaces_its_constraint(ddl, shop):
  customer = shop.get_element("customer")
  actual = DbColumnInfo(name="active", type="BIT", nullable=False, default="((0))")
  assert ddl.update_column(customer, customer.get_column("active"), actual).statements == (
    'ALTER TABLE "shop"."customer" DROP CONSTRAINT "def_customer_active"',
    'ALTER TABLE "shop"."customer" ADD CONSTRAINT "def_customer_active" DEFAULT 1 FOR "active"',
  )


def test_reflected_defaults_in_parentheses_match(ddl, shop):
  customer = shop.get_element("customer")
  actual = DbColumnInfo(name="recversion", type="INTEGER", nullable=False, default="((1))")
  assert ddl.update_column(customer, customer.get_column("recversion"), actual).is_noop


def test_type_change_alters_column_with_nullability(ddl, shop):
  customer = shop.get_element("customer")
  actual = DbColumnInfo(name="city", type="NVARCHAR(10)", nullable=True, default=None)
  assert ddl.update_column(customer, customer.get_column("city"), actual).statements == (
    'ALTER TABLE "shop"."customer" ALTER COLUMN "city" NVARCHAR(30) NULL',
  )


def test_versioning_trigger_throws_on_stale_revision(ddl, shop):
  (sql,) = ddl.create_versioning_trigger(shop.get_element("orders")).statements
  assert sql.startswith(
    'CREATE TRIGGER "shop"."orders_versioncheck" ON "shop"."orders" AFTER UPDATE AS'
  )
  assert ";THROW 50001, 'record version check failure', 1;" in sql
  assert 'JOIN deleted d ON i."id" = d."id"' in sql


def test_parameterized_view_is_inline_table_valued_function(ddl, shop):
  (sql,) = ddl.create_parameterized_view(shop.get_element("by_city")).statements
  assert sql == (
    'CREATE FUNCTION "shop"."by_city"(@city NVARCHAR(MAX))\n'
    'RETURNS TABLE AS RETURN (\n'
    '  SELECT "c"."name" AS "name"\n'
    '  FROM "shop"."customer" AS "c"\n'
    '  WHERE "c"."city" = @city\n'
    ')'
  )


def test_materialized_views_are_unsupported(ddl, shop):
  mv = shop.get_element("orders_by_customer")
  assert ddl.create_materialized_view(mv).is_unsupported
  assert ddl.create_materialized_view_triggers(mv).is_unsupported
  assert ddl.drop_materialized_view("shop", "orders_by_customer").is_unsupported


def test_drop_index_names_its_table(ddl):
  assert ddl.drop_index("shop", "orders", "ix_orders_customer").statements == (
    'DROP INDEX "ix_orders_customer" ON "shop"."orders"',
  )


def _reflected_rows():
  collation = "SQL_Latin1_General_CP1_CI_AS"
  return [
    {"name": "id", "type": sa_mssql.INTEGER(), "nullable": False, "default": None},
    {"name": "memo", "type": sa_mssql.NVARCHAR(collation=collation), "nullable": False,
     "default": None},
    {"name": "name", "type": sa_mssql.NVARCHAR(50, collation=collation), "nullable": False,
     "default": None},
    {"name": "blob", "type": sa_mssql.VARBINARY(), "nullable": False, "default": None},
    {"name": "amount", "type": sa_mssql.DECIMAL(10, 2), "nullable": True, "default": None},
    {"name": "flag", "type": sa_mssql.BIT(), "nullable": True, "default": None},
    {"name": "at", "type": sa_mssql.DATETIME2(precision=7), "nullable": True, "default": None},
  ]


@pytest.fixture
def typed_table():
  score = Score()
  t = score.add_grain("shop").add_table("t", versioned=False)
  t.add_column(Column("id", INTEGER, nullable=False))
  t.add_column(Column("memo", STRING, nullable=False))
  t.add_column(Column("name", STRING, nullable=False, max_length=50))
  t.add_column(Column("blob", BINARY, nullable=False))
  t.add_column(Column("amount", DECIMAL, precision=10, scale=2))
  t.add_column(Column("flag", BOOLEAN))
  t.add_column(Column("at", DATETIME))
  t.set_primary_key("id")
  score.finalize()
  return t


def test_reflected_types_are_spelled_like_declared_ones(mssql_dialect):
  cols = {c.name: c.type for c in _normalize_sa_columns(_reflected_rows(), mssql_dialect)}
  assert cols["memo"] == "NVARCHAR(MAX)"
  assert cols["name"] == "NVARCHAR(50)"
  assert cols["blob"] == "VARBINARY(MAX)"
  assert cols["amount"] == "DECIMAL(10,2)"


@pytest.mark.parametrize("with_dialect", [True, False])
def test_reflected_columns_need_no_alter(ddl, mssql_dialect, typed_table, with_dialect):
  rows = _normalize_sa_columns(_reflected_rows(), mssql_dialect if with_dialect else None)
  for actual in rows:
    result = ddl.update_column(typed_table, typed_table.get_column(actual.name), actual)
    assert result.is_noop, (actual.name, actual.type, result.statements)


def test_collation_and_max_length_are_ignored_when_comparing(mssql_dialect):
  d = mssql_dialect
  assert d.normalize_type('NVARCHAR(50) COLLATE "Latin1_General_CI_AS"') == "NVARCHAR(50)"
  assert d.normalize_type("NVARCHAR") == "NVARCHAR(MAX)"
  assert d.normalize_type("VARBINARY") == "VARBINARY(MAX)"
  assert d.normalize_type("NUMERIC(10, 2)") == "DECIMAL(10,2)"
