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

from dataclasses import dataclass, field
import logging
import threading
from typing import Dict, List, Optional, Tuple
import weakref

from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

from graindb.errors import ArgumentContractError
from graindb.query.params import Binder, FieldValueBinder, ParameterSetter, RevisionBinder
from graindb.query.terms import GET, INSERT, SELECT, UPDATE, FilterShape, WhereTermsMaker
from graindb.rendering.expr import Param, walk
from graindb.score.grain import TABLE_KINDS
from graindb.score.types import REVISION_COLUMN


logger = logging.getLogger(__name__)


@dataclass
class ConnectionState:
  """Ancillary data kept for one live connection."""
  backend_pid: Optional[int] = None
  statements: Dict[tuple, "CompiledStatement"] = field(default_factory=dict)


class ConnectionRegistry:
  """
  Process-wide association connection -> ConnectionState. Keys are held
  weakly: once a connection is unreachable its state (and every statement
  compiled for it) goes away without explicit eviction.
  """

  def __init__(self):
    self._lock = threading.Lock()
    self._states: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()

  def state_for(self, conn) -> ConnectionState:
    with self._lock:
      state = self._states.get(conn)
      if state is None:
        state = ConnectionState()
        self._states[conn] = state
      return state

  def backend_pid(self, conn, dialect) -> int:
    """Database-side process id of a connection, read once per connection."""
    state = self.state_for(conn)
    if state.backend_pid is None:
      state.backend_pid = dialect.backend_pid(conn)
      logger.debug("Connection %s has backend pid %s", id(conn), state.backend_pid)
    return state.backend_pid

  def discard(self, conn) -> None:
    with self._lock:
      self._states.pop(conn, None)

  def __len__(self) -> int:
    with self._lock:
      return len(self._states)

  def __contains__(self, conn) -> bool:
    with self._lock:
      return conn in self._states


CONNECTION_REGISTRY = ConnectionRegistry()


@dataclass(frozen=True)
class CompiledStatement:
  shape: FilterShape
  sql: str
  clause: TextClause
  setter: ParameterSetter

  def params(self, values=None, *, filters=None, params=None, revision=None) -> dict:
    return self.setter.bind(values, filters=filters, params=params, revision=revision)


class PreparedStatementCache:
  """
  Compiled statements per (connection, shape). A shape is compiled once per
  connection; later calls with the same shape only rebind values.
  """

  def __init__(self, score, dialect, registry: Optional[ConnectionRegistry] = None):
    self.score = score
    self.dialect = dialect
    self.registry = registry if registry is not None else CONNECTION_REGISTRY
    self.compile_count = 0
    # Statements are scoped to the score and dialect that compiled them.
    self._owner = (
      getattr(dialect, "DIALECT_NAME", type(dialect).__name__),
      tuple((g.name, g.checksum) for g in score.grains.values()),
    )

  def get(self, conn, shape: FilterShape) -> CompiledStatement:
    state = self.registry.state_for(conn)
    key = (self._owner, shape)
    stmt = state.statements.get(key)
    if stmt is None:
      stmt = self.compile(shape)
      state.statements[key] = stmt
      self.compile_count += 1
    return stmt

  # ---------------------------------------------------------------------------
  # Compilation
  # ---------------------------------------------------------------------------
  def _element(self, shape: FilterShape):
    element = self.score.get_grain(shape.grain).get_element(shape.table)
    if element.KIND not in TABLE_KINDS:
      raise ArgumentContractError(
        f"'{shape.grain}.{shape.table}' is a {element.KIND}, not a table."
      )
    return element

  def compile(self, shape: FilterShape) -> CompiledStatement:
    element = self._element(shape)
    d = self.dialect
    maker = WhereTermsMaker(element)
    table_sql = d.table_name(element.grain_name, element.name)
    columns = [c.name for c in element.physical_columns]
    binders: List[Binder] = []
    where_slots = 0

    if shape.kind == GET:
      term = maker.pk_where()
      binders += term.binders
      where_slots = _count_params(term.expr)
      sql = d.render_select(table_sql, columns, term.expr)

    elif shape.kind == SELECT:
      term = maker.filter_where(shape.filters, shape.where)
      binders += term.binders
      where_slots = _count_params(term.expr)
      sql = d.render_select(table_sql, columns, term.expr, maker.order_by(shape.order_by))

    elif shape.kind == INSERT:
      written = self._written_columns(element, shape, allow_pk=True)
      slots = list(range(1, len(written) + 1))
      binders += [FieldValueBinder(s, c) for s, c in zip(slots, written)]
      where_slots = len(slots)
      sql = d.render_insert(table_sql, written, slots)

    elif shape.kind == UPDATE:
      written = self._written_columns(element, shape, allow_pk=False)
      assignments: List[Tuple[str, int]] = [(c, i + 1) for i, c in enumerate(written)]
      binders += [FieldValueBinder(s, c) for c, s in assignments]
      term = maker.pk_where(first_slot=len(assignments) + 1)
      binders += term.binders
      if element.is_versioned:
        # Revision slot is always the last one.
        revision_slot = term.next_slot
        assignments.append((REVISION_COLUMN, revision_slot))
        binders.append(RevisionBinder(revision_slot))
      where_slots = len(assignments) + _count_params(term.expr)
      sql = d.render_update(table_sql, assignments, term.expr)

    else:
      raise ArgumentContractError(f"Unknown statement kind {shape.kind!r}.")

    setter = ParameterSetter(binders, expected_count=where_slots)
    logger.debug("Compiled %s statement for %s.%s: %s", shape.kind, shape.grain, shape.table, sql)
    return CompiledStatement(shape=shape, sql=sql, clause=text(sql), setter=setter)

  def _written_columns(self, element, shape: FilterShape, allow_pk: bool) -> List[str]:
    if element.is_read_only:
      raise ArgumentContractError(f"'{shape.grain}.{shape.table}' is read-only.")
    names = {c.name for c in element.physical_columns}
    written = list(shape.columns)
    if not written:
      raise ArgumentContractError(f"No columns to write to '{shape.grain}.{shape.table}'.")
    for col in written:
      if col == REVISION_COLUMN:
        raise ArgumentContractError(f"Column '{REVISION_COLUMN}' is maintained by the database.")
      if col not in names:
        raise ArgumentContractError(f"Unknown column '{col}' in '{shape.grain}.{shape.table}'.")
      if not allow_pk and col in element.primary_key:
        raise ArgumentContractError(
          f"Primary key column '{col}' of '{shape.grain}.{shape.table}' cannot be updated."
        )
    return written


def _count_params(expr) -> int:
  if expr is None:
    return 0
  return sum(1 for node in walk(expr) if isinstance(node, Param))
