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
from typing import Iterator, List, Optional


class Expr:
  """Marker base class for all logical SQL expression nodes."""
  pass


@dataclass
class ColumnRef(Expr):
  """Reference to a column, optionally qualified by a table alias."""
  table_alias: Optional[str]
  column_name: str


@dataclass
class Literal(Expr):
  """Simple literal value: string, number, bool, Decimal, date/datetime or None."""
  value: object


@dataclass
class Param(Expr):
  """
  Bound parameter slot of a compiled query statement.
  Rendered as a named bind (:p1, :p2, ...) so SQLAlchemy can adapt it to the
  driver's paramstyle.
  """
  slot: int


@dataclass
class ParamRef(Expr):
  """
  Reference to a declared argument of a parameterized view.
  `position` is assigned when the view is finalized (1-based).
  """
  name: str
  position: int = 0


@dataclass
class Comparison(Expr):
  """Binary comparison: =, <>, <, <=, >, >=, LIKE."""
  op: str
  left: Expr
  right: Expr


@dataclass
class Between(Expr):
  expr: Expr
  low: Expr
  high: Expr


@dataclass
class InList(Expr):
  expr: Expr
  items: List[Expr]


@dataclass
class IsNull(Expr):
  expr: Expr
  negated: bool = False


@dataclass
class BoolOp(Expr):
  """AND / OR over two or more parts."""
  op: str
  parts: List[Expr]


@dataclass
class Not(Expr):
  expr: Expr


@dataclass
class BinaryOp(Expr):
  """Arithmetic: +, -, *, /."""
  op: str
  left: Expr
  right: Expr


@dataclass
class Concat(Expr):
  """Vendor-neutral representation for string concatenation of multiple parts."""
  parts: List[Expr]


@dataclass
class Coalesce(Expr):
  """Vendor-neutral representation for COALESCE(a, b, ...)."""
  parts: List[Expr]


@dataclass
class FuncCall(Expr):
  """Generic scalar function call expression, e.g. UPPER(col)."""
  name: str
  args: List[Expr] = field(default_factory=list)


@dataclass
class Aggregate(Expr):
  """
  Aggregate function: SUM, COUNT, MIN, MAX.
  COUNT with `arg=None` is COUNT(*).
  """
  name: str
  arg: Optional[Expr] = None


COMPARISON_OPS = ("=", "<>", "<", "<=", ">", ">=", "LIKE")
ARITHMETIC_OPS = ("+", "-", "*", "/")
AGGREGATE_FUNCS = ("SUM", "COUNT", "MIN", "MAX")

# Node types that evaluate to a boolean.
LOGICAL_NODES = (Comparison, Between, InList, IsNull, BoolOp, Not)


def children(expr: Expr) -> List[Expr]:
  """Direct sub-expressions of a node, in rendering order."""
  if isinstance(expr, (Comparison, BinaryOp)):
    return [expr.left, expr.right]
  if isinstance(expr, Between):
    return [expr.expr, expr.low, expr.high]
  if isinstance(expr, InList):
    return [expr.expr, *expr.items]
  if isinstance(expr, (IsNull, Not)):
    return [expr.expr]
  if isinstance(expr, (BoolOp, Concat, Coalesce)):
    return list(expr.parts)
  if isinstance(expr, FuncCall):
    return list(expr.args)
  if isinstance(expr, Aggregate):
    return [expr.arg] if expr.arg is not None else []
  return []


def walk(expr: Expr) -> Iterator[Expr]:
  """Depth-first iteration over `expr` and all of its sub-expressions."""
  yield expr
  for child in children(expr):
    yield from walk(child)


# ---------------------------------------------------------------------------
# Convenience constructors
# ---------------------------------------------------------------------------

def L(value: object) -> Literal:
  """Helper for creating a Literal."""
  return Literal(value=value)


def COL(column_name: str, table_alias: Optional[str] = None) -> ColumnRef:
  """Helper for creating a ColumnRef."""
  return ColumnRef(table_alias=table_alias, column_name=column_name)


def PARAM(name: str) -> ParamRef:
  """Helper for referencing a parameterized-view argument."""
  return ParamRef(name=name)


def FUNC(name: str, *args: Expr) -> FuncCall:
  """Helper for generic function calls."""
  return FuncCall(name=name, args=list(args))


def EQ(left: Expr, right: Expr) -> Comparison:
  return Comparison("=", left, right)


def CMP(op: str, left: Expr, right: Expr) -> Comparison:
  op_upper = op.upper()
  if op_upper not in COMPARISON_OPS:
    raise ValueError(f"Unsupported comparison operator: {op!r}")
  return Comparison(op_upper, left, right)


def AND(*parts: Expr) -> Expr:
  if len(parts) == 1:
    return parts[0]
  return BoolOp("AND", list(parts))


def OR(*parts: Expr) -> Expr:
  if len(parts) == 1:
    return parts[0]
  return BoolOp("OR", list(parts))


def SUM(expr: Expr) -> Aggregate:
  return Aggregate("SUM", expr)


def COUNT(expr: Optional[Expr] = None) -> Aggregate:
  return Aggregate("COUNT", expr)


def MIN(expr: Expr) -> Aggregate:
  return Aggregate("MIN", expr)


def MAX(expr: Expr) -> Aggregate:
  return Aggregate("MAX", expr)


def CONCAT(*parts: Expr) -> Expr:
  """Vendor-neutral string concatenation."""
  return Concat(parts=list(parts))


def COALESCE(*parts: Expr) -> Expr:
  """Vendor-neutral COALESCE."""
  return Coalesce(parts=list(parts))
