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

from abc import ABC, abstractmethod
import datetime
from decimal import Decimal
import hashlib
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from graindb.errors import DialectError, UnsupportedOperationError
from graindb.rendering.expr import (
  Aggregate, Between, BinaryOp, BoolOp, Coalesce, ColumnRef, Comparison, Concat, Expr,
  FuncCall, InList, IsNull, Literal, Not, Param, ParamRef,
)


# Message raised by every versioning trigger; used to recognise optimistic lock failures.
VERSION_CHECK_MESSAGE = "record version check failure"

_WS_RE = re.compile(r"\s+")
# Single-quoted literal with doubled quotes as escapes.
_LITERAL_RE = re.compile(r"('(?:[^']|'')*')")


def fingerprint_sql(sql: str) -> str:
  """
  Stable fingerprint of a DDL statement. Whitespace runs outside string literals
  are collapsed so that catalogs which normalize spacing still yield the same value.
  """
  parts = _LITERAL_RE.split(sql or "")
  # Odd positions hold the captured literals.
  normalized = "".join(
    part if i % 2 else _WS_RE.sub(" ", part) for i, part in enumerate(parts)
  )
  normalized = normalized.strip().rstrip(";").strip()
  return hashlib.sha1(normalized.encode("utf-8")).hexdigest()


class _LineWrapper:
  """
  Appends fragments to a list of lines and breaks the current line once it
  reaches LINE_SIZE. Only whitespace is inserted, never inside a fragment.
  """
  LINE_SIZE = 80
  PADDING = "    "

  def __init__(self, start: str):
    self.lines: List[str] = [start]

  def append(self, fragment: str) -> None:
    self.lines[-1] += fragment
    if len(self.lines[-1]) >= self.LINE_SIZE:
      self.lines.append(self.PADDING)

  def newline(self, fragment: str) -> None:
    if not self.lines[-1].strip():
      self.lines.pop()
    self.lines.append(fragment)

  def text(self) -> str:
    if not self.lines[-1].strip():
      self.lines.pop()
    return "\n".join(line.rstrip() for line in self.lines)


class SqlDialect(ABC):
  """
  Base interface for SQL dialects (one instance per target engine).

  A dialect knows how the engine spells identifiers, types, literals and
  expressions, where grain objects live physically, which features it
  supports and how to read the few catalog facts SQLAlchemy's Inspector does
  not expose (triggers, view fingerprints). Catalog reads never mutate state.
  """

  DIALECT_NAME = "base"

  # ---------------------------------------------------------------------------
  # Capabilities (can be overridden by concrete dialects)
  # ---------------------------------------------------------------------------
  @property
  def supports_native_triggers(self) -> bool:
    return True

  @property
  def supports_sequences(self) -> bool:
    return False

  @property
  def supports_parameterized_views(self) -> bool:
    return False

  @property
  def supports_materialized_views(self) -> bool:
    return False

  @property
  def supports_alter_column(self) -> bool:
    return True

  @property
  def inline_foreign_keys(self) -> bool:
    """Whether foreign keys must be declared inside CREATE TABLE."""
    return False

  def capabilities(self) -> Dict[str, bool]:
    return {
      "native_triggers": self.supports_native_triggers,
      "sequences": self.supports_sequences,
      "parameterized_views": self.supports_parameterized_views,
      "materialized_views": self.supports_materialized_views,
      "alter_column": self.supports_alter_column,
    }

  def configure_engine(self, engine) -> None:
    """Install engine-level hooks the dialect relies on. Default: none."""
    return None

  def check_connection(self, conn) -> None:
    """Raise DialectError when a connection cannot run DDL transactionally."""
    return None

  # ---------------------------------------------------------------------------
  # Identifiers and physical naming
  # ---------------------------------------------------------------------------
  @abstractmethod
  def quote_ident(self, name: str) -> str:
    """
    Quote an identifier (schema, table, column) according to the dialect.
    """
    raise NotImplementedError

  def render_identifier(self, name: str) -> str:
    """Identifiers are always quoted so declared case is preserved."""
    return self.quote_ident(name)

  def render_table_identifier(self, schema: str | None, name: str) -> str:
    """
    Render a table identifier with optional schema.

      render_table_identifier("sales", "orders") -> "sales"."orders"
      render_table_identifier(None, "orders")    -> "orders"
    """
    name_sql = self.render_identifier(name)
    if schema:
      return f"{self.render_identifier(schema)}.{name_sql}"
    return name_sql

  def grain_schema(self, grain_name: str) -> Optional[str]:
    """Database schema holding a grain's objects (None: default schema)."""
    return grain_name

  def physical_name(self, grain_name: str, name: str) -> str:
    """Unqualified physical name of a grain object."""
    return name

  def logical_name(self, grain_name: str, physical: str) -> Optional[str]:
    """Inverse of physical_name; None when `physical` does not belong to the grain."""
    return physical

  def table_name(self, grain_name: str, name: str) -> str:
    """Fully qualified, quoted name of a grain object."""
    return self.render_table_identifier(
      self.grain_schema(grain_name), self.physical_name(grain_name, name)
    )

  def index_name(self, grain_name: str, index_name: str) -> str:
    return self.physical_name(grain_name, index_name)

  def pk_name(self, grain_name: str, table_name: str) -> str:
    return f"pk_{self.physical_name(grain_name, table_name)}"

  def fk_name(self, grain_name: str, table_name: str, fk) -> str:
    cols = "_".join(fk.columns)
    return f"fk_{self.physical_name(grain_name, table_name)}_{fk.ref_table}_{cols}"

  def versioning_trigger_name(self, grain_name: str, table_name: str) -> str:
    return f"{self.physical_name(grain_name, table_name)}_versioncheck"

  # ---------------------------------------------------------------------------
  # Types and defaults
  # ---------------------------------------------------------------------------
  @abstractmethod
  def map_type(self, datatype: str, max_length=None, precision=None, scale=None) -> str:
    """Map a semantic type to the engine's type literal."""
    raise NotImplementedError

  def column_type(self, column) -> str:
    return self.map_type(column.datatype, column.max_length, column.precision, column.scale)

  # Reflected type spelling -> spelling produced by map_type.
  TYPE_ALIASES: Dict[str, str] = {}

  def reflected_type_name(self, sa_type: Any) -> str:
    """Type literal of a column type object returned by the SQLAlchemy Inspector."""
    return "" if sa_type is None else str(sa_type)

  def normalize_type(self, type_name: Any) -> str:
    """Normalize a declared or reflected type literal for comparison."""
    if type_name is None:
      return ""
    s = " ".join(str(type_name).strip().upper().split())
    s = s.replace(", ", ",").replace(" (", "(")
    return self.TYPE_ALIASES.get(s, s)

  def render_default(self, column) -> Optional[str]:
    if column.default is None:
      return None
    return self.render_literal(column.default)

  def normalize_default(self, default: Any) -> Optional[str]:
    """Normalize a declared or reflected DEFAULT expression for comparison."""
    if default is None:
      return None
    s = str(default).strip()
    while s.startswith("(") and s.endswith(")"):
      s = s[1:-1].strip()
    if not s or s.upper() == "NULL":
      return None
    if s.startswith("'"):
      return s
    return s.upper()

  def render_column_definition(self, column, *, with_default: bool = True) -> str:
    parts = [self.render_identifier(column.name), self.column_type(column)]
    default_sql = self.render_default(column) if with_default else None
    if default_sql is not None:
      parts.append(f"DEFAULT {default_sql}")
    parts.append("NULL" if column.nullable else "NOT NULL")
    return " ".join(parts)

  # ---------------------------------------------------------------------------
  # Literal Rendering
  # ---------------------------------------------------------------------------
  def render_bool(self, value: bool) -> str:
    return "TRUE" if value else "FALSE"

  def render_literal(self, value) -> str:
    """
    Render a Python value as a SQL literal.
    Handles None, bool, int, float, Decimal, str, bytes, date, datetime.
    """
    if value is None:
      return "NULL"
    if isinstance(value, bool):
      return self.render_bool(value)
    if isinstance(value, int):
      return str(value)
    if isinstance(value, float):
      return repr(value)
    if isinstance(value, Decimal):
      return str(value)
    if isinstance(value, bytes):
      return self.render_binary_literal(value)
    if isinstance(value, datetime.datetime):
      return f"'{value.isoformat(sep=' ')}'"
    if isinstance(value, datetime.date):
      return f"'{value.isoformat()}'"
    s = str(value).replace("'", "''")
    return f"'{s}'"

  def render_binary_literal(self, value: bytes) -> str:
    return f"X'{value.hex()}'"

  # ---------------------------------------------------------------------------
  # Expression rendering
  # ---------------------------------------------------------------------------
  def concat_expression(self, parts: Sequence[str]) -> str:
    """
    Build a concatenation from already-rendered parts.
    Default: ANSI || operator.
    """
    if not parts:
      return "''"
    return "(" + " || ".join(parts) + ")"

  def render_param_ref(self, ref: ParamRef) -> str:
    raise UnsupportedOperationError(
      f"{self.__class__.__name__} cannot reference function parameters."
    )

  def render_bind(self, slot: int) -> str:
    """Named bind parameter consumed by sqlalchemy.text()."""
    return f":p{slot}"

  def render_expr(self, expr: Expr) -> str:
    if isinstance(expr, ColumnRef):
      if expr.table_alias:
        return f"{self.render_identifier(expr.table_alias)}.{self.render_identifier(expr.column_name)}"
      return self.render_identifier(expr.column_name)

    if isinstance(expr, Literal):
      return self.render_literal(expr.value)

    if isinstance(expr, Param):
      return self.render_bind(expr.slot)

    if isinstance(expr, ParamRef):
      return self.render_param_ref(expr)

    if isinstance(expr, Comparison):
      return f"{self._operand(expr.left)} {expr.op} {self._operand(expr.right)}"

    if isinstance(expr, Between):
      return (
        f"{self._operand(expr.expr)} BETWEEN {self._operand(expr.low)} "
        f"AND {self._operand(expr.high)}"
      )

    if isinstance(expr, InList):
      items = ", ".join(self.render_expr(i) for i in expr.items)
      return f"{self._operand(expr.expr)} IN ({items})"

    if isinstance(expr, IsNull):
      suffix = "IS NOT NULL" if expr.negated else "IS NULL"
      return f"{self._operand(expr.expr)} {suffix}"

    if isinstance(expr, BoolOp):
      joiner = f" {expr.op.upper()} "
      return "(" + joiner.join(self.render_expr(p) for p in expr.parts) + ")"

    if isinstance(expr, Not):
      return f"NOT ({self.render_expr(expr.expr)})"

    if isinstance(expr, BinaryOp):
      return f"({self.render_expr(expr.left)} {expr.op} {self.render_expr(expr.right)})"

    if isinstance(expr, Concat):
      return self.concat_expression([self.render_expr(p) for p in expr.parts])

    if isinstance(expr, Coalesce):
      return "COALESCE(" + ", ".join(self.render_expr(p) for p in expr.parts) + ")"

    if isinstance(expr, Aggregate):
      if expr.arg is None:
        return f"{expr.name.upper()}(*)"
      return f"{expr.name.upper()}({self.render_expr(expr.arg)})"

    if isinstance(expr, FuncCall):
      args_sql = ", ".join(self.render_expr(a) for a in expr.args)
      return f"{expr.name.upper()}({args_sql})"

    raise TypeError(f"Unsupported expression type for {self.__class__.__name__}: {type(expr)!r}")

  def _operand(self, expr: Expr) -> str:
    sql = self.render_expr(expr)
    if isinstance(expr, (Comparison, Between, InList, IsNull)):
      return f"({sql})"
    return sql

  # ---------------------------------------------------------------------------
  # View select rendering (shared by views, functions, materialized views)
  # ---------------------------------------------------------------------------
  def render_view_select(self, view) -> str:
    """
    Render the SELECT of a view element. Long select lists are wrapped at
    80 characters; wrapping only ever inserts whitespace.
    """
    out = _LineWrapper("  SELECT ")
    if view.distinct:
      out.append("DISTINCT ")
    first = True
    for alias, expr in view.columns.items():
      if not first:
        out.append(", ")
      out.append(f"{self.render_expr(expr)} AS {self.render_identifier(alias)}")
      first = False

    first = True
    for ref in view.tables.values():
      source = f"{self.table_name(ref.grain, ref.table)} AS {self.render_identifier(ref.alias)}"
      if first:
        out.newline(f"  FROM {source}")
        first = False
      else:
        on_sql = self.render_expr(ref.on)
        out.newline(f"    {ref.join_type.upper()} JOIN {source} ON {on_sql}")

    if view.where is not None:
      out.newline(f"  WHERE {self.render_expr(view.where)}")

    if view.group_by:
      group_sql = ", ".join(self.render_expr(view.columns[a]) for a in view.group_by)
      out.newline(f"  GROUP BY {group_sql}")
    return out.text()

  # ---------------------------------------------------------------------------
  # Statement rendering for the query term builder
  # ---------------------------------------------------------------------------
  def render_order_by(self, order_by: Sequence[Tuple[str, bool]]) -> str:
    items = [
      f"{self.render_identifier(c)}{' DESC' if desc else ''}" for c, desc in order_by
    ]
    return ", ".join(items)

  def render_select(
    self,
    table_sql: str,
    columns: Sequence[str],
    where: Optional[Expr] = None,
    order_by: Sequence[Tuple[str, bool]] = (),
  ) -> str:
    cols = ", ".join(self.render_identifier(c) for c in columns) or "*"
    sql = f"SELECT {cols} FROM {table_sql}"
    if where is not None:
      sql += f" WHERE {self.render_expr(where)}"
    if order_by:
      sql += f" ORDER BY {self.render_order_by(order_by)}"
    return sql

  def render_insert(self, table_sql: str, columns: Sequence[str], slots: Sequence[int]) -> str:
    cols = ", ".join(self.render_identifier(c) for c in columns)
    vals = ", ".join(self.render_bind(s) for s in slots)
    return f"INSERT INTO {table_sql} ({cols}) VALUES ({vals})"

  def render_update(
    self,
    table_sql: str,
    assignments: Sequence[Tuple[str, int]],
    where: Expr,
  ) -> str:
    sets = ", ".join(f"{self.render_identifier(c)} = {self.render_bind(s)}" for c, s in assignments)
    return f"UPDATE {table_sql} SET {sets} WHERE {self.render_expr(where)}"

  # ---------------------------------------------------------------------------
  # Catalog queries
  # ---------------------------------------------------------------------------
  TRIGGER_EXISTS_SQL: Optional[str] = None
  VIEW_DEFINITIONS_SQL: Optional[str] = None
  FUNCTION_DEFINITIONS_SQL: Optional[str] = None
  BACKEND_PID_SQL: Optional[str] = None

  def _catalog_rows(self, conn, sql: Optional[str], params: Dict[str, Any], what: str):
    if not sql:
      return []
    params = {k: v for k, v in params.items() if f":{k}" in sql}
    try:
      return conn.execute(text(sql), params).fetchall()
    except SQLAlchemyError as exc:
      raise DialectError(f"{self.DIALECT_NAME}: could not read {what}: {exc}") from exc

  def trigger_exists(self, conn, grain_name: str, table_name: str, trigger_name: str) -> bool:
    """Live check; never cached, another process may have changed it."""
    rows = self._catalog_rows(
      conn,
      self.TRIGGER_EXISTS_SQL,
      {
        "schema": self.grain_schema(grain_name),
        "table": self.physical_name(grain_name, table_name),
        "name": trigger_name,
      },
      f"triggers of {grain_name}.{table_name}",
    )
    return bool(rows)

  def _fingerprints(self, conn, grain_name: str, sql: Optional[str], what: str) -> Dict[str, str]:
    rows = self._catalog_rows(conn, sql, {"schema": self.grain_schema(grain_name)}, what)
    out: Dict[str, str] = {}
    for physical, definition in rows:
      logical = self.logical_name(grain_name, physical)
      if logical is not None:
        out[logical] = self.fingerprint_from_catalog(definition)
    return out

  def fingerprint_from_catalog(self, stored: Optional[str]) -> str:
    """Turn the catalog's stored definition into a fingerprint."""
    return fingerprint_sql(stored or "")

  def read_view_fingerprints(self, conn, grain_name: str) -> Dict[str, str]:
    return self._fingerprints(conn, grain_name, self.VIEW_DEFINITIONS_SQL, f"views of {grain_name}")

  def read_function_fingerprints(self, conn, grain_name: str) -> Dict[str, str]:
    return self._fingerprints(
      conn, grain_name, self.FUNCTION_DEFINITIONS_SQL, f"functions of {grain_name}"
    )

  def backend_pid(self, conn) -> int:
    if not self.BACKEND_PID_SQL:
      return 0
    rows = self._catalog_rows(conn, self.BACKEND_PID_SQL, {}, "backend pid")
    return int(rows[0][0]) if rows else 0

  def is_version_check_failure(self, exc: BaseException) -> bool:
    return VERSION_CHECK_MESSAGE in str(getattr(exc, "orig", None) or exc)

  # ---------------------------------------------------------------------------
  # DDL
  # ---------------------------------------------------------------------------
  @abstractmethod
  def ddl_generator(self):
    """Return the DdlGenerator paired with this dialect."""
    raise NotImplementedError
