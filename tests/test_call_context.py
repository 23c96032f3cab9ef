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

from graindb.context import (
  ACTIVE, CLOSED, MAX_DATA_ACCESSORS, NEW, CallContext, DataAccessor, TableAccessor,
)
from graindb.errors import ContextStateError, ResourceLeakError
from graindb.query.statements import CONNECTION_REGISTRY


class RecordingAccessor(DataAccessor):
  def __init__(self, context, name, closed_log):
    super().__init__(context)
    self.name = name
    self.closed_log = closed_log

  def _release(self):
    self.closed_log.append(self.name)


@pytest.fixture
def ctx(engine, sqlite_dialect, shop_score):
  context = CallContext("tester", proc_name="test").activate(engine, sqlite_dialect, shop_score)
  yield context
  context.close()


def test_activation_checks_out_a_connection(ctx):
  assert ctx.state == ACTIVE
  assert ctx.conn is not None
  assert ctx.conn in CONNECTION_REGISTRY
  assert ctx.backend_pid == 0
  assert ctx.start_time is not None
  assert ctx.duration >= 0.0


def test_context_cannot_be_activated_twice(ctx, engine, sqlite_dialect, shop_score):
  with pytest.raises(ContextStateError):
    ctx.activate(engine, sqlite_dialect, shop_score)


def test_accessors_require_an_active_context(shop_score):
  context = CallContext("idle")
  assert context.state == NEW
  with pytest.raises(ContextStateError):
    DataAccessor(context)


def test_accessor_ceiling_is_enforced(ctx):
  accessors = [DataAccessor(ctx) for _ in range(MAX_DATA_ACCESSORS)]
  assert ctx.accessor_count == MAX_DATA_ACCESSORS

  with pytest.raises(ResourceLeakError):
    DataAccessor(ctx)
  assert ctx.accessor_count == MAX_DATA_ACCESSORS

  # Closing one makes room for one more.
  accessors[0].close()
  DataAccessor(ctx)
  assert ctx.accessor_count == MAX_DATA_ACCESSORS


def test_sequentially_closed_accessors_never_hit_the_ceiling(ctx):
  for _ in range(2000):
    with DataAccessor(ctx):
      pass
  assert ctx.accessor_count == 0


def test_close_releases_accessors_in_reverse_order_once(ctx):
  log = []
  first = RecordingAccessor(ctx, "first", log)
  RecordingAccessor(ctx, "second", log)
  RecordingAccessor(ctx, "third", log)
  first.close()

  ctx.close()
  ctx.close()

  assert log == ["first", "third", "second"]
  assert ctx.state == CLOSED
  assert ctx.is_closed
  assert ctx.conn is None
  assert ctx.accessor_count == 0


def test_closed_context_rejects_work(ctx):
  customers = TableAccessor(ctx, "shop", "customer")
  ctx.close()
  assert customers.closed
  with pytest.raises(ContextStateError):
    ctx.commit()
  with pytest.raises(ContextStateError):
    customers.get(1)


def test_duration_freezes_on_close(ctx):
  ctx.close()
  frozen = ctx.duration
  assert ctx.duration == frozen


def test_table_accessor_rejects_non_tables(ctx):
  with pytest.raises(ContextStateError, match="not a table"):
    TableAccessor(ctx, "shop", "customer_orders")
  assert ctx.accessor_count == 0


def test_context_manager_closes(engine, sqlite_dialect, shop_score):
  with CallContext("cm").activate(engine, sqlite_dialect, shop_score) as context:
    DataAccessor(context)
  assert context.is_closed


def test_user_id_is_required():
  with pytest.raises(ContextStateError, match="user id"):
    CallContext("")
