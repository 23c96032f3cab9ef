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

from graindb.rendering.dialects.sqlite import SqliteDialect
from graindb.system.introspection import DbColumnInfo, DbForeignKeyInfo, DbPkInfo


@pytest.fixture
def ddl(sqlite_dialect):
  return sqlite_dialect.ddl_generator()


@pytest.fixture
def shop(shop_score):
  return shop_score.get_grain("shop")


def test_grain_objects_are_prefixed_in_the_main_schema(sqlite_dialect):
  d = sqlite_dialect
  assert d.grain_schema("shop") is None
  assert d.physical_name("shop", "orders") == "shop__orders"
  assert d.logical_name("shop", "shop__orders") == "orders"
  assert d.logical_name("shop", "other__orders") is None
  assert d.versioning_trigger_name("shop", "orders") == "shop__orders_versioncheck"


def test_sqlite_capabilities():
  caps = SqliteDialect().capabilities()
  assert caps["alter_column"] is False
  assert caps["parameterized_views"] is False
  assert caps["materialized_views"] is True


def test_schema_creation_is_a_noop(ddl):
  assert ddl.create_schema("shop").is_noop


def test_foreign_keys_are_declared_inline(ddl, shop):
  (sql,) = ddl.create_table(shop.get_element("orders")).statements
  assert sql == (
    'CREATE TABLE "shop__orders" (\n'
    '  "id" INTEGER NOT NULL,\n'
    '  "customer_id" INTEGER NOT NULL,\n'
    '  "amount" NUMERIC(10,2) DEFAULT 0 NOT NULL,\n'
    '  "note" TEXT NULL,\n'
    '  "recversion" INTEGER DEFAULT 1 NOT NULL,\n'
    '  CONSTRAINT "pk_shop__orders" PRIMARY KEY ("id"),\n'
    '  CONSTRAINT "fk_shop__orders_customer_customer_id" FOREIGN KEY ("customer_id") '
    'REFERENCES "shop__customer" ("id")\n'
    ')'
  )


def test_column_changes_are_unsupported(ddl, shop):
  customer = shop.get_element("customer")
  same = DbColumnInfo(name="city", type="VARCHAR(30)", nullable=True, default=None)
  assert ddl.update_column(customer, customer.get_column("city"), same).is_noop

  wider = DbColumnInfo(name="city", type="VARCHAR(20)", nullable=True, default=None)
  result = ddl.update_column(customer, customer.get_column("city"), wider)
  assert result.is_unsupported
  assert "type changed" in result.reason


def test_constraint_changes_on_existing_tables_are_unsupported(ddl, shop):
  orders = shop.get_element("orders")
  assert ddl.update_primary_key(orders, DbPkInfo(name=None, columns=["id"])).is_noop
  assert ddl.update_primary_key(orders, DbPkInfo(name=None, columns=["customer_id"])).is_unsupported
  assert ddl.add_foreign_key(orders, orders.foreign_keys[0]).is_unsupported
  live_fk = DbForeignKeyInfo(
    table="orders", name=None, columns=["customer_id"], ref_table="shop__customer",
    ref_columns=["id"],
  )
  assert ddl.drop_foreign_key(orders, live_fk).is_unsupported


def test_versioning_trigger_checks_and_increments(ddl, shop):
  (sql,) = ddl.create_versioning_trigger(shop.get_element("customer")).statements
  assert sql == (
    'CREATE TRIGGER "shop__customer_versioncheck" AFTER UPDATE ON "shop__customer" FOR EACH ROW\n'
    'BEGIN\n'
    '  SELECT RAISE(ABORT, \'record version check failure\') '
    'WHERE NEW."recversion" <> OLD."recversion";\n'
    '  UPDATE "shop__customer" SET "recversion" = "recversion" + 1 WHERE rowid = NEW.rowid;\n'
    'END'
  )


def test_materialized_view_triggers_watch_only_aggregated_columns(ddl, shop):
  mv = shop.get_element("orders_by_customer")
  assert ddl.materialized_view_trigger_names(mv) == [
    "shop__orders_orders_by_customer_mvins",
    "shop__orders_orders_by_customer_mvupd",
    "shop__orders_orders_by_customer_mvdel",
  ]
  ins, upd, dele = ddl.create_materialized_view_triggers(mv).statements
  assert ins.startswith('CREATE TRIGGER "shop__orders_orders_by_customer_mvins" AFTER INSERT')
  assert 'AFTER UPDATE OF "amount", "customer_id" ON "shop__orders"' in upd
  assert 'INSERT OR IGNORE INTO "shop__orders_by_customer"' in ins
  assert 'DELETE FROM "shop__orders_by_customer"' in dele


def test_parameterized_views_are_unsupported(ddl, shop):
  assert ddl.drop_parameterized_view("shop", "anything").is_unsupported
