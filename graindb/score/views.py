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
from decimal import Decimal
import datetime
from typing import Callable, ClassVar, Dict, List, Optional

from graindb.errors import ModelError
from graindb.rendering.expr import (
  Aggregate, BinaryOp, ColumnRef, Concat, Coalesce, Expr, FuncCall, Literal,
  LOGICAL_NODES, ParamRef, walk,
)
from graindb.score.model import Column
from graindb.score.types import (
  BINARY, BOOLEAN, DATETIME, DECIMAL, INTEGER, STRING, SEMANTIC_TYPES, SURROGATE_COUNT_COLUMN,
)


JOIN_TYPES = ("inner", "left", "right")


@dataclass
class TableRef:
  """
  A table in the FROM list of a view. The first reference is the FROM table,
  every further one is joined with `join_type` on `on`.
  """
  table: str
  alias: str
  grain: Optional[str] = None
  join_type: str = "inner"
  on: Optional[Expr] = None
  element: object = field(default=None, repr=False, compare=False)


@dataclass
class ViewColumnMeta:
  datatype: str
  max_length: Optional[int] = None
  precision: Optional[int] = None
  scale: Optional[int] = None


@dataclass
class ViewParam:
  name: str
  datatype: str

  def __post_init__(self):
    self.datatype = (self.datatype or "").upper()
    if self.datatype not in SEMANTIC_TYPES:
      raise ModelError(f"Parameter '{self.name}' has unknown type {self.datatype!r}.")


@dataclass
class ViewElement:
  """
  Select-based grain element. Holds select items (alias -> expression), table
  references, an optional where condition and GROUP BY aliases, all ordered.
  """
  KIND: ClassVar[str] = ""
  VIEW_TYPE: ClassVar[str] = "View"

  grain_name: str
  name: str
  distinct: bool = False
  columns: Dict[str, Expr] = field(default_factory=dict)
  tables: Dict[str, TableRef] = field(default_factory=dict)
  where: Optional[Expr] = None
  group_by: List[str] = field(default_factory=list)
  column_types: Dict[str, ViewColumnMeta] = field(default_factory=dict, compare=False)

  @property
  def qualified_name(self) -> str:
    return f"{self.grain_name}.{self.name}"

  def add_column(self, alias: str, expr: Expr) -> None:
    if expr is None:
      raise ValueError("expr must not be None")
    if not alias:
      raise ModelError(f"{self.VIEW_TYPE} '{self.name}' contains a column with undefined alias.")
    if alias in self.columns:
      raise ModelError(
        f"{self.VIEW_TYPE} '{self.name}' already contains column with name or alias '{alias}'. "
        f"Use unique aliases for {self.VIEW_TYPE} columns."
      )
    self.columns[alias] = expr

  def add_table(
    self,
    table: str,
    alias: str,
    *,
    grain: Optional[str] = None,
    join_type: str = "inner",
    on: Optional[Expr] = None,
  ) -> TableRef:
    if not alias:
      raise ModelError(f"{self.VIEW_TYPE} '{self.name}' contains a table with undefined alias.")
    if alias in self.tables:
      raise ModelError(
        f"{self.VIEW_TYPE} '{self.name}' already contains table with name or alias '{alias}'. "
        f"Use unique aliases for {self.VIEW_TYPE} tables."
      )
    jt = join_type.lower()
    if jt not in JOIN_TYPES:
      raise ModelError(f"Unknown join type {join_type!r} in {self.VIEW_TYPE} '{self.name}'.")
    if self.tables and on is None:
      raise ModelError(
        f"{self.VIEW_TYPE} '{self.name}': joined table '{alias}' needs an ON condition."
      )
    ref = TableRef(table=table, alias=alias, grain=grain, join_type=jt, on=on)
    self.tables[alias] = ref
    return ref

  def set_where(self, expr: Optional[Expr]) -> None:
    self.where = expr

  def add_group_by(self, alias: str) -> None:
    if alias in self.group_by:
      raise ModelError(
        f"Duplicate column '{alias}' in GROUP BY expression for {self.VIEW_TYPE} "
        f"'{self.qualified_name}'."
      )
    self.group_by.append(alias)

  def aggregate_aliases(self) -> List[str]:
    return [a for a, e in self.columns.items() if isinstance(e, Aggregate)]

  def params(self) -> Dict[str, ViewParam]:
    return {}

  # ---------------------------------------------------------------------------
  # Finalization
  # ---------------------------------------------------------------------------
  def finalize(self, resolve_table: Callable[[TableRef], object]) -> None:
    """
    Resolve table and field references, check expression kinds and the
    GROUP BY invariant, infer column types. Raises ModelError.
    """
    if not self.columns:
      raise ModelError(f"{self.VIEW_TYPE} '{self.qualified_name}' selects no columns.")
    if not self.tables:
      raise ModelError(f"{self.VIEW_TYPE} '{self.qualified_name}' has no FROM table.")

    for ref in self.tables.values():
      ref.element = resolve_table(ref)

    for ref in self.tables.values():
      if ref.on is not None:
        self._resolve_refs(ref.on, "ON condition")
        self._assert_logical(ref.on, "ON condition")

    for alias, expr in self.columns.items():
      self._resolve_refs(expr, f"column '{alias}'")
      for node in walk(expr):
        if isinstance(node, Aggregate) and node is not expr:
          raise ModelError(
            f"{self.VIEW_TYPE} '{self.qualified_name}': aggregate functions may only be "
            f"used at the top level of a column (column '{alias}')."
          )

    if self.where is not None:
      self._resolve_refs(self.where, "WHERE condition")
      self._assert_logical(self.where, "WHERE condition")
      if any(isinstance(n, Aggregate) for n in walk(self.where)):
        raise ModelError(
          f"{self.VIEW_TYPE} '{self.qualified_name}': aggregates are not allowed in WHERE."
        )

    for alias in self.group_by:
      if alias not in self.columns:
        raise ModelError(
          f"GROUP BY column '{alias}' of {self.VIEW_TYPE} '{self.qualified_name}' "
          f"is not a selected column."
        )
      if isinstance(self.columns[alias], Aggregate):
        raise ModelError(
          f"GROUP BY column '{alias}' of {self.VIEW_TYPE} '{self.qualified_name}' is an aggregate."
        )

    aggregates = set(self.aggregate_aliases())
    if (aggregates and len(aggregates) != len(self.columns)) or self.group_by:
      for alias in self.columns:
        if alias not in aggregates and alias not in self.group_by:
          raise ModelError(
            f"{self.VIEW_TYPE} '{self.qualified_name}' contains a column(s) which was not "
            f"specified in aggregate function and GROUP BY expression."
          )

    self.column_types = {
      alias: self._infer_type(expr) for alias, expr in self.columns.items()
    }

  def _assert_logical(self, expr: Expr, where: str) -> None:
    if not isinstance(expr, LOGICAL_NODES):
      raise ModelError(
        f"{self.VIEW_TYPE} '{self.qualified_name}': {where} must be a logical expression, "
        f"got {type(expr).__name__}."
      )

  def _resolve_refs(self, expr: Expr, where: str) -> None:
    declared = self.params()
    for node in walk(expr):
      if isinstance(node, ColumnRef):
        self._column_for(node, where)
      elif isinstance(node, ParamRef):
        if node.name not in declared:
          raise ModelError(
            f"{self.VIEW_TYPE} '{self.qualified_name}': {where} references undeclared "
            f"parameter '{node.name}'."
          )
        node.position = list(declared).index(node.name) + 1

  def _column_for(self, ref: ColumnRef, where: str) -> Column:
    if ref.table_alias is None:
      if len(self.tables) != 1:
        raise ModelError(
          f"{self.VIEW_TYPE} '{self.qualified_name}': {where} references column "
          f"'{ref.column_name}' without a table alias."
        )
      table_ref = next(iter(self.tables.values()))
    else:
      table_ref = self.tables.get(ref.table_alias)
      if table_ref is None:
        raise ModelError(
          f"{self.VIEW_TYPE} '{self.qualified_name}': {where} references unknown table "
          f"alias '{ref.table_alias}'."
        )
    element = table_ref.element
    for c in element.physical_columns:
      if c.name == ref.column_name:
        return c
    raise ModelError(
      f"{self.VIEW_TYPE} '{self.qualified_name}': {where} references unknown field "
      f"'{table_ref.alias}.{ref.column_name}'."
    )

  def _infer_type(self, expr: Expr) -> ViewColumnMeta:
    if isinstance(expr, ColumnRef):
      c = self._column_for(expr, "column")
      return ViewColumnMeta(c.datatype, c.max_length, c.precision, c.scale)
    if isinstance(expr, ParamRef):
      return ViewColumnMeta(self.params()[expr.name].datatype)
    if isinstance(expr, Aggregate):
      if expr.name == "COUNT" or expr.arg is None:
        return ViewColumnMeta(INTEGER)
      return self._infer_type(expr.arg)
    if isinstance(expr, Literal):
      return ViewColumnMeta(_literal_type(expr.value))
    if isinstance(expr, BinaryOp):
      left = self._infer_type(expr.left)
      right = self._infer_type(expr.right)
      if DECIMAL in (left.datatype, right.datatype) or expr.op == "/":
        return ViewColumnMeta(DECIMAL)
      return ViewColumnMeta(left.datatype)
    if isinstance(expr, Concat):
      return ViewColumnMeta(STRING)
    if isinstance(expr, Coalesce) and expr.parts:
      return self._infer_type(expr.parts[0])
    if isinstance(expr, FuncCall) and expr.args:
      return self._infer_type(expr.args[0])
    if isinstance(expr, LOGICAL_NODES):
      return ViewColumnMeta(BOOLEAN)
    return ViewColumnMeta(STRING)


def _literal_type(value: object) -> str:
  if isinstance(value, bool):
    return BOOLEAN
  if isinstance(value, int):
    return INTEGER
  if isinstance(value, (float, Decimal)):
    return DECIMAL
  if isinstance(value, (datetime.date, datetime.datetime)):
    return DATETIME
  if isinstance(value, bytes):
    return BINARY
  return STRING


@dataclass
class View(ViewElement):
  KIND: ClassVar[str] = "view"
  VIEW_TYPE: ClassVar[str] = "View"


@dataclass
class ParameterizedView(ViewElement):
  """View taking typed arguments, rendered as a table-valued function."""
  KIND: ClassVar[str] = "parameterized_view"
  VIEW_TYPE: ClassVar[str] = "Function"

  parameters: Dict[str, ViewParam] = field(default_factory=dict)

  def add_param(self, name: str, datatype: str) -> ViewParam:
    if not name:
      raise ModelError(f"Function '{self.name}' declares a parameter without a name.")
    if name in self.parameters:
      raise ModelError(f"Function '{self.name}' already declares parameter '{name}'.")
    param = ViewParam(name, datatype)
    self.parameters[name] = param
    return param

  def params(self) -> Dict[str, ViewParam]:
    return self.parameters

  def finalize(self, resolve_table: Callable[[TableRef], object]) -> None:
    super().finalize(resolve_table)
    used = {n.name for e in self.columns.values() for n in walk(e) if isinstance(n, ParamRef)}
    if self.where is not None:
      used |= {n.name for n in walk(self.where) if isinstance(n, ParamRef)}
    unused = [p for p in self.parameters if p not in used]
    if unused:
      raise ModelError(
        f"Function '{self.qualified_name}' declares unused parameter(s): {', '.join(unused)}."
      )


@dataclass
class MaterializedView(ViewElement):
  """
  Aggregate over a single table, stored as a real table and kept current by
  triggers on the source table. GROUP BY columns form its primary key.
  """
  KIND: ClassVar[str] = "materialized_view"
  VIEW_TYPE: ClassVar[str] = "Materialized view"

  def finalize(self, resolve_table: Callable[[TableRef], object]) -> None:
    if len(self.tables) != 1:
      raise ModelError(
        f"Materialized view '{self.qualified_name}' must select from exactly one table."
      )
    if self.where is not None:
      raise ModelError(f"Materialized view '{self.qualified_name}' cannot have a WHERE condition.")
    if self.distinct:
      raise ModelError(f"Materialized view '{self.qualified_name}' cannot be DISTINCT.")
    super().finalize(resolve_table)

    if not self.group_by:
      raise ModelError(f"Materialized view '{self.qualified_name}' must have a GROUP BY.")
    source = self.source_ref.element
    if getattr(source, "KIND", None) not in ("table", "read_only_table"):
      raise ModelError(f"Materialized view '{self.qualified_name}' must select from a table.")

    for alias, expr in self.columns.items():
      if alias in self.group_by:
        if not isinstance(expr, ColumnRef):
          raise ModelError(
            f"Materialized view '{self.qualified_name}': GROUP BY column '{alias}' must be "
            f"a plain field reference."
          )
        if self._column_for(expr, alias).nullable:
          raise ModelError(
            f"Materialized view '{self.qualified_name}': GROUP BY column '{alias}' must be "
            f"NOT NULL in the source table."
          )
        continue
      ok = isinstance(expr, Aggregate) and (
        (expr.name == "SUM" and isinstance(expr.arg, ColumnRef))
        or (expr.name == "COUNT" and expr.arg is None)
      )
      if not ok:
        raise ModelError(
          f"Materialized view '{self.qualified_name}': column '{alias}' must be SUM(field) "
          f"or COUNT(*)."
        )

  @property
  def source_ref(self) -> TableRef:
    return next(iter(self.tables.values()))

  @property
  def primary_key(self) -> List[str]:
    return list(self.group_by)

  @property
  def physical_columns(self) -> List[Column]:
    out = []
    for alias in self.columns:
      meta = self.column_types[alias]
      if alias in self.group_by:
        out.append(Column(alias, meta.datatype, nullable=False, max_length=meta.max_length,
                          precision=meta.precision, scale=meta.scale))
      else:
        out.append(Column(alias, meta.datatype, nullable=False, default=0,
                          precision=meta.precision, scale=meta.scale))
    out.append(Column(SURROGATE_COUNT_COLUMN, INTEGER, nullable=False, default=0))
    return out
