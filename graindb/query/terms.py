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
from typing import Any, List, Optional, Sequence, Tuple

from graindb.errors import ArgumentContractError
from graindb.query.params import (
  Binder, FieldValueBinder, FilterParamBinder, RangeBinder,
)
from graindb.rendering.expr import (
  AND, Between, BinaryOp, BoolOp, Coalesce, ColumnRef, Comparison, Concat, Expr, FuncCall,
  InList, IsNull, Not, Param, ParamRef, children,
)


GET = "get"
SELECT = "select"
INSERT = "insert"
UPDATE = "update"
STATEMENT_KINDS = (GET, SELECT, INSERT, UPDATE)

EQ_FILTER = "eq"
RANGE_FILTER = "range"


@dataclass(frozen=True)
class Range:
  """Inclusive range filter value: low <= column <= high."""
  low: Any
  high: Any


@dataclass(frozen=True)
class FilterSpec:
  column: str
  kind: str = EQ_FILTER


@dataclass(frozen=True)
class FilterShape:
  """
  Identity of a statement, independent of bound values. Two shapes are equal
  when they bind the same columns the same way, in the same order, with the
  same ordering and complex filter.
  """
  kind: str
  grain: str
  table: str
  filters: Tuple[FilterSpec, ...] = ()
  order_by: Tuple[Tuple[str, bool], ...] = ()
  where_key: Optional[str] = None
  columns: Tuple[str, ...] = ()
  where: Optional[Expr] = field(default=None, compare=False, hash=False, repr=False)

  @classmethod
  def for_select(
    cls,
    grain: str,
    table: str,
    filters: Sequence[FilterSpec] = (),
    order_by: Sequence[Tuple[str, bool]] = (),
    where: Optional[Expr] = None,
  ) -> "FilterShape":
    return cls(
      kind=SELECT,
      grain=grain,
      table=table,
      filters=tuple(filters),
      order_by=tuple(order_by),
      where_key=repr(where) if where is not None else None,
      where=where,
    )


@dataclass(frozen=True)
class WhereTerm:
  """A condition over table columns plus the binders of its parameter slots."""
  expr: Optional[Expr]
  binders: Tuple[Binder, ...] = ()

  @property
  def param_count(self) -> int:
    return len(self.binders)

  @property
  def next_slot(self) -> int:
    return max((b.slot for b in self.binders), default=0) + 1


def parse_order_by(items: Sequence[Any]) -> Tuple[Tuple[str, bool], ...]:
  """
  Accept "col", "-col" (descending) or (col, descending) pairs.
  """
  out = []
  for item in items or ():
    if isinstance(item, str):
      if item.startswith("-"):
        out.append((item[1:], True))
      else:
        out.append((item, False))
    else:
      col, desc = item
      out.append((col, bool(desc)))
  return tuple(out)


class WhereTermsMaker:
  """
  Builds WHERE conditions and ORDER BY lists for one table element. All
  values are bound through numbered slots; nothing is inlined.
  """

  def __init__(self, element):
    self.element = element
    self.column_names = [c.name for c in element.physical_columns]

  @property
  def _where(self) -> str:
    return f"'{self.element.grain_name}.{self.element.name}'"

  def _check_column(self, name: str) -> None:
    if name not in self.column_names:
      raise ArgumentContractError(f"Unknown column '{name}' in {self._where}.")

  # ---------------------------------------------------------------------------
  # Primary key
  # ---------------------------------------------------------------------------
  def pk_values(self, args: Sequence[Any]) -> dict:
    """Map positional primary key values to columns; the count must match exactly."""
    pk = list(getattr(self.element, "primary_key", []) or [])
    if not pk:
      raise ArgumentContractError(f"{self._where} has no primary key.")
    if len(args) != len(pk):
      raise ArgumentContractError(
        f"{self._where} has {len(pk)} primary key column(s) ({', '.join(pk)}), "
        f"got {len(args)} value(s)."
      )
    return dict(zip(pk, args))

  def pk_where(self, first_slot: int = 1) -> WhereTerm:
    pk = list(getattr(self.element, "primary_key", []) or [])
    if not pk:
      raise ArgumentContractError(f"{self._where} has no primary key.")
    parts, binders = [], []
    for i, col in enumerate(pk):
      slot = first_slot + i
      parts.append(Comparison("=", ColumnRef(None, col), Param(slot)))
      binders.append(FieldValueBinder(slot, col))
    return WhereTerm(AND(*parts), tuple(binders))

  # ---------------------------------------------------------------------------
  # Filters
  # ---------------------------------------------------------------------------
  def filter_where(
    self,
    filters: Sequence[FilterSpec] = (),
    where: Optional[Expr] = None,
    first_slot: int = 1,
  ) -> WhereTerm:
    parts: List[Expr] = []
    binders: List[Binder] = []
    slot = first_slot
    for spec in filters:
      self._check_column(spec.column)
      col = ColumnRef(None, spec.column)
      if spec.kind == RANGE_FILTER:
        parts.append(Between(col, Param(slot), Param(slot + 1)))
        binders += [RangeBinder(slot, spec.column, 0), RangeBinder(slot + 1, spec.column, 1)]
        slot += 2
      elif spec.kind == EQ_FILTER:
        parts.append(Comparison("=", col, Param(slot)))
        binders.append(FieldValueBinder(slot, spec.column))
        slot += 1
      else:
        raise ArgumentContractError(f"Unknown filter kind {spec.kind!r} for '{spec.column}'.")

    if where is not None:
      bound, extra = self._bind_complex(where, slot)
      parts.append(bound)
      binders += extra

    if not parts:
      return WhereTerm(None, ())
    return WhereTerm(AND(*parts), tuple(binders))

  def _bind_complex(self, expr: Expr, first_slot: int) -> Tuple[Expr, List[Binder]]:
    """
    Copy a caller-supplied condition, turning every ParamRef into a numbered
    slot. Column references must name columns of this table.
    """
    binders: List[Binder] = []

    def rebuild(node: Expr) -> Expr:
      if isinstance(node, ParamRef):
        slot = first_slot + len(binders)
        binders.append(FilterParamBinder(slot, node.name))
        return Param(slot)
      if isinstance(node, ColumnRef):
        self._check_column(node.column_name)
        return ColumnRef(None, node.column_name)
      if isinstance(node, Param):
        raise ArgumentContractError("Filter conditions reference parameters by name, not slot.")
      if not children(node):
        return node
      return _map_children(node, rebuild)

    return rebuild(expr), binders

  # ---------------------------------------------------------------------------
  # Ordering
  # ---------------------------------------------------------------------------
  def order_by(self, requested: Sequence[Tuple[str, bool]] = ()) -> Tuple[Tuple[str, bool], ...]:
    """
    Requested sort columns, completed with the primary key columns not yet
    present (in key order). Without a request and without a primary key,
    rows are sorted by the first column.
    """
    out = list(requested or ())
    for col, _ in out:
      self._check_column(col)
    pk = list(getattr(self.element, "primary_key", []) or [])
    if not out and not pk:
      return ((self.column_names[0], False),)
    present = {c for c, _ in out}
    for col in pk:
      if col not in present:
        out.append((col, False))
    return tuple(out)


def _map_children(node: Expr, fn) -> Expr:
  if isinstance(node, Comparison):
    return Comparison(node.op, fn(node.left), fn(node.right))
  if isinstance(node, Between):
    return Between(fn(node.expr), fn(node.low), fn(node.high))
  if isinstance(node, InList):
    return InList(fn(node.expr), [fn(i) for i in node.items])
  if isinstance(node, IsNull):
    return IsNull(fn(node.expr), node.negated)
  if isinstance(node, BoolOp):
    return BoolOp(node.op, [fn(p) for p in node.parts])
  if isinstance(node, Not):
    return Not(fn(node.expr))
  if isinstance(node, BinaryOp):
    return BinaryOp(node.op, fn(node.left), fn(node.right))
  if isinstance(node, Concat):
    return Concat([fn(p) for p in node.parts])
  if isinstance(node, Coalesce):
    return Coalesce([fn(p) for p in node.parts])
  if isinstance(node, FuncCall):
    return FuncCall(node.name, [fn(a) for a in node.args])
  raise ArgumentContractError(f"Unsupported node in filter condition: {type(node).__name__}.")
