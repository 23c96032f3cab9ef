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

from graindb.errors import ModelError
from graindb.rendering.expr import COL, COUNT, EQ, L, MAX, PARAM, SUM
from graindb.score.grain import Score
from graindb.score.model import Column
from graindb.score.types import DECIMAL, INTEGER, REVISION_COLUMN, STRING, SURROGATE_COUNT_COLUMN
from tests._score_factory import add_customer, add_orders, build_shop_score


def _grain_with_customer():
  score = Score()
  shop = score.add_grain("shop")
  add_customer(shop)
  return score, shop


def test_finalize_marks_score_and_sets_grain_checksums():
  score = build_shop_score()
  assert score.finalized is False

  score.finalize()

  assert score.finalized is True
  assert len(score.get_grain("shop").checksum) == 40


def test_checksum_is_stable_and_changes_with_declaration():
  a = build_shop_score().finalize().get_grain("shop").checksum
  b = build_shop_score().finalize().get_grain("shop").checksum
  c = build_shop_score(with_mv=False).finalize().get_grain("shop").checksum
  assert a == b
  assert a != c


def test_unknown_column_type_is_rejected():
  with pytest.raises(ModelError, match="unknown type"):
    Column("x", "MONEY")


def test_revision_column_name_is_reserved():
  _, shop = _grain_with_customer()
  with pytest.raises(ModelError, match="reserved"):
    shop.get_element("customer").add_column(Column(REVISION_COLUMN, INTEGER))


def test_versioned_table_carries_revision_column_last():
  _, shop = _grain_with_customer()
  names = [c.name for c in shop.get_element("customer").physical_columns]
  assert names[-1] == REVISION_COLUMN


def test_read_only_table_has_no_revision_column():
  score = build_shop_score().finalize()
  country = score.get_grain("shop").get_element("country")
  assert REVISION_COLUMN not in [c.name for c in country.physical_columns]
  assert country.is_read_only
  assert not country.is_versioned


def test_table_without_primary_key_is_rejected():
  score = Score()
  shop = score.add_grain("shop")
  t = shop.add_table("loose")
  t.add_column(Column("a", INTEGER))
  with pytest.raises(ModelError, match="primary key"):
    score.finalize()


def test_nullable_primary_key_column_is_rejected():
  score = Score()
  shop = score.add_grain("shop")
  t = shop.add_table("t")
  t.add_column(Column("a", INTEGER))
  t.set_primary_key("a")
  with pytest.raises(ModelError, match="NOT NULL"):
    score.finalize()


def test_foreign_key_defaults_to_target_primary_key():
  score, shop = _grain_with_customer()
  orders = add_orders(shop)
  score.finalize()
  fk = orders.foreign_keys[0]
  assert fk.ref_grain == "shop"
  assert fk.ref_columns == ["id"]


def test_foreign_key_to_unknown_table_is_rejected():
  score, shop = _grain_with_customer()
  shop.get_element("customer").add_foreign_key(["id"], "nowhere")
  with pytest.raises(ModelError, match="unknown table"):
    score.finalize()


def test_duplicate_view_alias_is_rejected():
  _, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_column("name", COL("name"))
  with pytest.raises(ModelError, match="unique aliases"):
    view.add_column("name", COL("city"))


def test_view_column_outside_group_by_is_rejected():
  score, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_table("customer", "c")
  view.add_column("name", COL("name", "c"))
  view.add_column("city", COL("city", "c"))
  view.add_column("n", COUNT())
  view.add_group_by("name")
  with pytest.raises(ModelError, match="not\\s+specified in aggregate function"):
    score.finalize()


def test_mixing_aggregates_and_plain_columns_requires_group_by():
  score, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_table("customer", "c")
  view.add_column("name", COL("name", "c"))
  view.add_column("n", COUNT())
  with pytest.raises(ModelError, match="GROUP BY"):
    score.finalize()


def test_aggregate_only_view_needs_no_group_by():
  score, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_table("customer", "c")
  view.add_column("n", COUNT())
  view.add_column("longest", MAX(COL("name", "c")))
  score.finalize()
  assert view.column_types["n"].datatype == INTEGER
  assert view.column_types["longest"].datatype == STRING


def test_nested_aggregate_is_rejected():
  score, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_table("customer", "c")
  view.add_column("n", SUM(SUM(COL("id", "c"))))
  with pytest.raises(ModelError, match="top level"):
    score.finalize()


def test_unknown_field_reference_is_rejected():
  score, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_table("customer", "c")
  view.add_column("x", COL("nope", "c"))
  with pytest.raises(ModelError, match="unknown field"):
    score.finalize()


def test_where_must_be_a_logical_expression():
  score, shop = _grain_with_customer()
  view = shop.add_view("v")
  view.add_table("customer", "c")
  view.add_column("name", COL("name", "c"))
  view.set_where(L(1))
  with pytest.raises(ModelError, match="logical expression"):
    score.finalize()


def test_materialized_view_physical_columns():
  score = build_shop_score().finalize()
  mv = score.get_grain("shop").get_element("orders_by_customer")
  cols = {c.name: c for c in mv.physical_columns}

  assert list(cols) == ["customer_id", "total", "cnt", SURROGATE_COUNT_COLUMN]
  assert mv.primary_key == ["customer_id"]
  assert cols["total"].datatype == DECIMAL
  assert (cols["total"].precision, cols["total"].scale) == (10, 2)
  assert cols["cnt"].default == 0
  assert not any(c.nullable for c in cols.values())


def test_materialized_view_rejects_non_sum_aggregate():
  score, shop = _grain_with_customer()
  mv = shop.add_materialized_view("mv")
  mv.add_table("customer", "c")
  mv.add_column("id", COL("id", "c"))
  mv.add_column("longest", MAX(COL("name", "c")))
  mv.add_group_by("id")
  with pytest.raises(ModelError, match="SUM\\(field\\) or COUNT"):
    score.finalize()


def test_materialized_view_group_column_must_be_not_null():
  score, shop = _grain_with_customer()
  mv = shop.add_materialized_view("mv")
  mv.add_table("customer", "c")
  mv.add_column("city", COL("city", "c"))
  mv.add_column("n", COUNT())
  mv.add_group_by("city")
  with pytest.raises(ModelError, match="NOT NULL"):
    score.finalize()


def test_parameterized_view_numbers_parameters_and_rejects_unused_ones():
  score, shop = _grain_with_customer()
  pv = shop.add_parameterized_view("by_city")
  pv.add_param("city", STRING)
  pv.add_table("customer", "c")
  pv.add_column("name", COL("name", "c"))
  where = EQ(COL("city", "c"), PARAM("city"))
  pv.set_where(where)
  score.finalize()
  assert where.right.position == 1

  score2, shop2 = _grain_with_customer()
  pv2 = shop2.add_parameterized_view("f")
  pv2.add_param("unused", INTEGER)
  pv2.add_table("customer", "c")
  pv2.add_column("name", COL("name", "c"))
  with pytest.raises(ModelError, match="unused parameter"):
    score2.finalize()


def test_cross_grain_view_reference_resolves():
  score, shop = _grain_with_customer()
  report = score.add_grain("report")
  view = report.add_view("names")
  view.add_table("customer", "c", grain="shop")
  view.add_column("name", COL("name", "c"))
  score.finalize()
  assert view.tables["c"].grain == "shop"
  assert view.tables["c"].element is shop.get_element("customer")


def test_get_element_with_wrong_kind_raises():
  score = build_shop_score().finalize()
  shop = score.get_grain("shop")
  with pytest.raises(ModelError, match="no table named"):
    shop.get_element("customer_orders", kind="table")


def test_grain_name_with_separator_is_rejected():
  score = Score()
  score.add_grain("a")
  with pytest.raises(ModelError, match="must not contain '__'"):
    score.add_grain("a__b")
