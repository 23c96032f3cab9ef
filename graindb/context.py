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

from __future__ import annotations

import datetime
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import DBAPIError

from graindb.errors import ConcurrencyViolationError, ContextStateError, ResourceLeakError
from graindb.query.statements import CONNECTION_REGISTRY, PreparedStatementCache
from graindb.query.terms import (
  EQ_FILTER, GET, INSERT, RANGE_FILTER, UPDATE, FilterShape, FilterSpec, Range,
  WhereTermsMaker, parse_order_by,
)
from graindb.score.grain import TABLE_KINDS


logger = logging.getLogger(__name__)

NEW = "new"
ACTIVE = "active"
CLOSED = "closed"

# Ceiling on accessors open at the same time in one context.
MAX_DATA_ACCESSORS = 1023


class CallContext:
  """
  Unit of work: one CallContext owns one connection and every data accessor
  opened through it.
  """

  def __init__(self, user_id: str, proc_name: Optional[str] = None):
    if not user_id:
      raise ContextStateError("Call context's user id must not be empty.")
    self.user_id = user_id
    self.proc_name = proc_name
    self.state = NEW
    self.conn = None
    self.dialect = None
    self.score = None
    self.statements: Optional[PreparedStatementCache] = None
    self.backend_pid: Optional[int] = None
    self.start_time: Optional[datetime.datetime] = None
    self._started: Optional[float] = None
    self._duration: Optional[float] = None
    self._accessors: List["DataAccessor"] = []

  # ---------------------------------------------------------------------------
  # Lifecycle
  # ---------------------------------------------------------------------------
  def activate(self, engine, dialect, score, proc_name: Optional[str] = None) -> "CallContext":
    """Check out a connection and make the context usable."""
    if self.state != NEW:
      raise ContextStateError(f"Call context of '{self.user_id}' is already {self.state}.")
    if not score.finalized:
      score.finalize()
    self.conn = engine.connect()
    self.dialect = dialect
    self.score = score
    self.proc_name = proc_name or self.proc_name
    self.statements = PreparedStatementCache(score, dialect)
    self.backend_pid = CONNECTION_REGISTRY.backend_pid(self.conn, dialect)
    self.start_time = datetime.datetime.now()
    self._started = time.monotonic()
    self.state = ACTIVE
    logger.debug(
      "Call context activated for %s (proc=%s, backend pid=%s)",
      self.user_id, self.proc_name, self.backend_pid,
    )
    return self

  def check_active(self) -> None:
    if self.state != ACTIVE:
      raise ContextStateError(f"Call context of '{self.user_id}' is {self.state}, not active.")

  @property
  def is_closed(self) -> bool:
    return self.state == CLOSED

  @property
  def duration(self) -> float:
    """Seconds since activation (frozen once the context is closed)."""
    if self._duration is not None:
      return self._duration
    if self._started is None:
      return 0.0
    return time.monotonic() - self._started

  def commit(self) -> None:
    self.check_active()
    self.conn.commit()

  def rollback(self) -> None:
    self.check_active()
    self.conn.rollback()

  def close(self) -> None:
    """
    Close open accessors most recently opened first, then release the
    connection. Calling it again does nothing.
    """
    if self.state == CLOSED:
      return
    try:
      for accessor in reversed(list(self._accessors)):
        accessor.close()
    finally:
      self._accessors.clear()
      if self.conn is not None:
        self.conn.close()
        self.conn = None
      if self._started is not None:
        self._duration = time.monotonic() - self._started
      self.state = CLOSED
      logger.debug("Call context of %s closed after %.3fs", self.user_id, self.duration)

  def __enter__(self) -> "CallContext":
    return self

  def __exit__(self, exc_type, exc, tb) -> None:
    self.close()

  # ---------------------------------------------------------------------------
  # Accessor bookkeeping
  # ---------------------------------------------------------------------------
  @property
  def accessor_count(self) -> int:
    return len(self._accessors)

  def register_accessor(self, accessor: "DataAccessor") -> None:
    self.check_active()
    if len(self._accessors) >= MAX_DATA_ACCESSORS:
      raise ResourceLeakError(
        f"Too many data accessors ({len(self._accessors)}) open in the call context of "
        f"'{self.user_id}'; accessors are probably not being closed."
      )
    self._accessors.append(accessor)

  def unregister_accessor(self, accessor: "DataAccessor") -> None:
    try:
      self._accessors.remove(accessor)
    except ValueError:
      pass


class DataAccessor:
  """Resource-holding handle opened within one call context."""

  def __init__(self, context: CallContext):
    context.register_accessor(self)
    self.context = context
    self.closed = False

  def close(self) -> None:
    if self.closed:
      return
    self.closed = True
    self.context.unregister_accessor(self)
    self._release()

  def _release(self) -> None:
    return None

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc, tb) -> None:
    self.close()


class TableAccessor(DataAccessor):
  """Primary key lookup, filtered select, insert and update on one table."""

  def __init__(self, context: CallContext, grain_name: str, table_name: str):
    context.check_active()
    element = context.score.get_grain(grain_name).get_element(table_name)
    if element.KIND not in TABLE_KINDS:
      raise ContextStateError(f"'{grain_name}.{table_name}' is a {element.KIND}, not a table.")
    super().__init__(context)
    self.element = element
    self.grain_name = grain_name
    self.table_name = table_name
    self._maker = WhereTermsMaker(element)
    self.last_rows: List[Dict[str, Any]] = []

  def _release(self) -> None:
    self.last_rows = []

  def _check_open(self) -> None:
    if self.closed:
      raise ContextStateError(f"Accessor for '{self.grain_name}.{self.table_name}' is closed.")
    self.context.check_active()

  def _execute(self, shape: FilterShape, **bind):
    stmt = self.context.statements.get(self.context.conn, shape)
    params = stmt.params(**bind)
    try:
      return self.context.conn.execute(stmt.clause, params)
    except DBAPIError as exc:
      if self.context.dialect.is_version_check_failure(exc):
        raise ConcurrencyViolationError(
          f"Row of '{self.grain_name}.{self.table_name}' was changed by another user "
          f"since it was read (revision {bind.get('revision')})."
        ) from exc
      raise

  def get(self, *pk_values) -> Optional[Dict[str, Any]]:
    """Row with the given primary key, or None."""
    self._check_open()
    values = self._maker.pk_values(pk_values)
    shape = FilterShape(kind=GET, grain=self.grain_name, table=self.table_name)
    row = self._execute(shape, values=values).mappings().first()
    return dict(row) if row is not None else None

  def select(
    self,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Sequence[Any] = (),
    where=None,
    where_params: Optional[Dict[str, Any]] = None,
  ) -> List[Dict[str, Any]]:
    """
    Rows matching equality/range filters and an optional condition, ordered
    by the requested columns completed with the primary key.
    """
    self._check_open()
    filters = dict(filters or {})
    specs = [
      FilterSpec(col, RANGE_FILTER if isinstance(val, Range) else EQ_FILTER)
      for col, val in filters.items()
    ]
    shape = FilterShape.for_select(
      self.grain_name, self.table_name, specs, parse_order_by(order_by), where
    )
    result = self._execute(shape, filters=filters, params=where_params or {})
    self.last_rows = [dict(r) for r in result.mappings().all()]
    return self.last_rows

  def insert(self, values: Dict[str, Any]) -> int:
    self._check_open()
    shape = FilterShape(
      kind=INSERT, grain=self.grain_name, table=self.table_name, columns=tuple(values)
    )
    return self._execute(shape, values=values).rowcount

  def update(
    self,
    pk_values: Sequence[Any],
    values: Dict[str, Any],
    revision: Optional[int] = None,
  ) -> int:
    """
    Update one row by primary key. Versioned tables require the revision read
    earlier; a stale revision raises ConcurrencyViolationError.
    """
    self._check_open()
    if not isinstance(pk_values, (list, tuple)):
      pk_values = (pk_values,)
    pk = self._maker.pk_values(pk_values)
    shape = FilterShape(
      kind=UPDATE, grain=self.grain_name, table=self.table_name, columns=tuple(values)
    )
    return self._execute(shape, values={**values, **pk}, revision=revision).rowcount
