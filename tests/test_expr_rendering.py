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

import datetime
from decimal import Decimal

import pytest

from graindb.errors import UnsupportedOperationError
from graindb.rendering.dialects.base import fingerprint_sql
from graindb.rendering.expr import (
  AND, CMP, COALESCE, COL, CONCAT, COUNT, EQ, FUNC, L, OR, PARAM, SUM,
  Between, BinaryOp, InList, IsNull, Not, Param,
)
from graindb.score.grain import Score
from graindb.score.model import Column
from graindb.score.types import INTEGER


def test_column_and_literal_rendering(postgres_dialect):
  d = postgres_dialect
  assert d.render_expr(COL("name", "c")) == '"c"."name"'
  assert d.render_expr(COL("name")) == '"name"'
  assert d.render_expr(L("O'Brien")) == "'O''Brien'"
  assert d.render_expr(L(None)) == "NULL"
  assert d.render_expr(L(Decimal("1.50"))) == "1.50"
  assert d.render_expr(L(datetime.date(2025, 3, 4))) == "'2025-03-04'"
  assert d.render_expr(L(datetime.datetime(2025, 3, 4, 5, 6, 7))) == "'2025-03-04 05:06:07'"


def test_boolean_literals_per_dialect(postgres_dialect, sqlite_dialect, mssql_dialect):
  assert postgres_dialect.render_literal(True) == "TRUE"
  assert sqlite_dialect.render_literal(True) == "1"
  assert mssql_dialect.render_literal(False) == "0"


def test_binary_literals_per_dialect(postgres_dialect, sqlite_dialect, mssql_dialect):
  assert sqlite_dialect.render_literal(b"\x01\xff") == "X'01ff'"
  assert mssql_dialect.render_literal(b"\x01\xff") == "0x01ff"
  assert postgres_dialect.render_literal(b"\x01\xff") == "'\\x01ff'::bytea"


def test_logical_expressions(sqlite_dialect):
  d = sqlite_dialect
  expr = AND(
    EQ(COL("a"), L(1)),
    OR(CMP(">=", COL("b"), L(2)), IsNull(COL("c"))),
    Not(InList(COL("d"), [L("x"), L("y")])),
    Between(COL("e"), L(1), L(9)),
  )
  assert d.render_expr(expr) == (
    '("a" = 1 AND ("b" >= 2 OR "c" IS NULL) AND NOT ("d" IN (\'x\', \'y\'))'
    ' AND "e" BETWEEN 1 AND 9)'
  )


def test_unknown_comparison_operator_is_rejected():
  with pytest.raises(ValueError):
    CMP("~~", COL("a"), L(1))


def test_arithmetic_coalesce_and_functions(sqlite_dialect):
  d = sqlite_dialect
  assert d.render_expr(BinaryOp("*", COL("a"), L(2))) == '("a" * 2)'
  assert d.render_expr(COALESCE(COL("a"), L(0))) == 'COALESCE("a", 0)'
  assert d.render_expr(FUNC("upper", COL("a"))) == 'UPPER("a")'
  assert d.render_expr(COUNT()) == "COUNT(*)"
  assert d.render_expr(SUM(COL("x", "t"))) == 'SUM("t"."x")'


def test_concat_per_dialect(postgres_dialect, mssql_dialect):
  expr = CONCAT(COL("a"), L("-"), COL("b"))
  assert postgres_dialect.render_expr(expr) == "(\"a\" || '-' || \"b\")"
  assert mssql_dialect.render_expr(expr) == "(\"a\" + '-' + \"b\")"


def test_bind_parameters_are_named_slots(sqlite_dialect):
  assert sqlite_dialect.render_expr(EQ(COL("id"), Param(3))) == '"id" = :p3'


def test_param_refs_per_dialect(postgres_dialect, mssql_dialect, sqlite_dialect):
  ref = PARAM("city")
  ref.position = 2
  assert postgres_dialect.render_expr(ref) == "$2"
  assert mssql_dialect.render_expr(ref) == "@city"
  with pytest.raises(UnsupportedOperationError):
    sqlite_dialect.render_expr(ref)


def test_identifier_quoting_escapes_quotes(postgres_dialect):
  assert postgres_dialect.quote_ident('we"ird') == '"we""ird"'


def test_table_names_per_dialect(postgres_dialect, sqlite_dialect, mssql_dialect):
  assert postgres_dialect.table_name("shop", "orders") == '"shop"."orders"'
  assert mssql_dialect.table_name("shop", "orders") == '"shop"."orders"'
  assert sqlite_dialect.table_name("shop", "orders") == '"shop__orders"'


def _wide_view():
  score = Score()
  g = score.add_grain("g")
  t = g.add_table("t")
  for i in range(20):
    t.add_column(Column(f"column_number_{i}", INTEGER, nullable=False))
  t.set_primary_key("column_number_0")
  view = g.add_view("wide")
  view.add_table("t", "t")
  for i in range(20):
    view.add_column(f"alias_number_{i}", COL(f"column_number_{i}", "t"))
  score.finalize()
  return view


def test_long_select_lists_are_wrapped_without_splitting_tokens(postgres_dialect):
  view = _wide_view()
  sql = postgres_dialect.render_view_select(view)
  lines = sql.split("\n")

  assert len(lines) > 3
  assert lines[0].startswith("  SELECT ")
  for line in lines[1:-1]:
    assert line.startswith("    ")

  # Wrapping only inserts whitespace: collapsing it restores the flat select.
  flat = " ".join(sql.split())
  for i in range(20):
    assert f'"t"."column_number_{i}" AS "alias_number_{i}"' in flat
  assert flat.endswith('FROM "g"."t" AS "t"')


def test_view_select_renders_join_where_and_group_by(postgres_dialect, shop_score):
  view = shop_score.get_grain("shop").get_element("customer_orders")
  sql = postgres_dialect.render_view_select(view)
  assert sql == (
    '  SELECT "c"."name" AS "customer_name", COUNT(*) AS "order_count", '
    'SUM("o"."amount") AS "total"\n'
    '  FROM "shop"."customer" AS "c"\n'
    '    INNER JOIN "shop"."orders" AS "o" ON "c"."id" = "o"."customer_id"\n'
    '  GROUP BY "c"."name"'
  )


def test_fingerprint_ignores_whitespace_layout():
  a = "CREATE VIEW v AS\n  SELECT a,\n    b FROM t"
  b = "CREATE VIEW v AS SELECT a, b FROM t;"
  assert fingerprint_sql(a) == fingerprint_sql(b)
  assert fingerprint_sql(a) != fingerprint_sql("CREATE VIEW v AS SELECT a FROM t")


def test_fingerprint_keeps_whitespace_inside_literals():
  a = "CREATE VIEW v AS SELECT  'a  b' AS c FROM t"
  b = "CREATE VIEW v AS SELECT 'a b' AS c FROM t"
  assert fingerprint_sql(a) != fingerprint_sql(b)
  assert fingerprint_sql(a) == fingerprint_sql("CREATE VIEW v AS\n  SELECT 'a  b' AS c FROM t")
  assert fingerprint_sql("SELECT 'it''s  x'") != fingerprint_sql("SELECT 'it''s x'")
