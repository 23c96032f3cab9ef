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

import re
from typing import Any, Sequence

from graindb.rendering.dialects.base import SqlDialect, VERSION_CHECK_MESSAGE
from graindb.rendering.dialects.ddl import DdlGenerator, DdlResult
from graindb.rendering.expr import ParamRef
from graindb.score.types import (
  BINARY, BOOLEAN, DATETIME, DECIMAL, INTEGER, REVISION_COLUMN, STRING,
)


_TSQL_BASE_RE = re.compile(r"^([a-zA-Z0-9_]+)")
_COLLATE_RE = re.compile(r"\s+COLLATE\s+.*$", re.IGNORECASE | re.DOTALL)


class MssqlDialect(SqlDialect):
  """
  SQL dialect for Microsoft SQL Server.

  Grains map to schemas. Parameterized views become inline table-valued
  functions; materialized views are not supported.
  """

  DIALECT_NAME = "mssql"

  TYPE_ALIASES = {
    "INTEGER": "INT",
    "NUMERIC": "DECIMAL(18,0)",
    "DECIMAL": "DECIMAL(18,0)",
  }

  # Types whose length is left out when SQL Server reports (max).
  MAX_LENGTH_TYPES = ("NVARCHAR", "VARCHAR", "VARBINARY")

  TRIGGER_EXISTS_SQL = """
    SELECT 1
    FROM sys.triggers tr
    JOIN sys.tables t ON t.object_id = tr.parent_id
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    WHERE s.name = :schema AND t.name = :table AND tr.name = :name
  """

  VIEW_DEFINITIONS_SQL = """
    SELECT o.name, m.definition
    FROM sys.sql_modules m
    JOIN sys.objects o ON o.object_id = m.object_id
    JOIN sys.schemas s ON s.schema_id = o.schema_id
    WHERE s.name = :schema AND o.type = 'V'
  """

  FUNCTION_DEFINITIONS_SQL = """
    SELECT o.name, m.definition
    FROM sys.sql_modules m
    JOIN sys.objects o ON o.object_id = m.object_id
    JOIN sys.schemas s ON s.schema_id = o.schema_id
    WHERE s.name = :schema AND o.type = 'IF'
  """

  BACKEND_PID_SQL = "SELECT @@SPID"

  # ---------------------------------------------------------------------------
  # Capabilities
  # ---------------------------------------------------------------------------
  @property
  def supports_sequences(self) -> bool:
    return True

  @property
  def supports_parameterized_views(self) -> bool:
    return True

  # ---------------------------------------------------------------------------
  # Identifier quoting
  # ---------------------------------------------------------------------------
  def quote_ident(self, name: str) -> str:
    """
    Quote identifiers with double quotes (QUOTED_IDENTIFIER is on for every
    modern driver connection).
    """
    escaped = name.replace('"', '""')
    return f'"{escaped}"'

  def default_constraint_name(self, grain_name: str, table_name: str, column_name: str) -> str:
    return f"def_{self.physical_name(grain_name, table_name)}_{column_name}"

  # ---------------------------------------------------------------------------
  # Logical type mapping
  # ---------------------------------------------------------------------------
  def map_type(self, datatype, max_length=None, precision=None, scale=None):
    dt = datatype.upper()
    if dt == INTEGER:
      return "INT"
    if dt == STRING:
      return f"NVARCHAR({int(max_length)})" if max_length else "NVARCHAR(MAX)"
    if dt == DATETIME:
      return "DATETIME2"
    if dt == DECIMAL:
      return f"DECIMAL({int(precision or 18)},{int(scale or 0)})"
    if dt == BOOLEAN:
      return "BIT"
    if dt == BINARY:
      return "VARBINARY(MAX)"
    return dt

  def reflected_type_name(self, sa_type: Any) -> str:
    """
    Build the type literal from the reflected type's attributes. SQLAlchemy
    reports (max) lengths as None and attaches the column collation, neither
    of which appears in a declared type.
    """
    if sa_type is None:
      return ""
    m = _TSQL_BASE_RE.match(str(sa_type))
    base = (m.group(1) if m else str(sa_type)).upper()

    if base in ("NVARCHAR", "NCHAR", "VARCHAR", "CHAR", "VARBINARY", "BINARY"):
      length = getattr(sa_type, "length", None)
      if length is None or length == -1 or str(length).lower() == "max":
        return f"{base}(MAX)"
      return f"{base}({int(length)})"

    if base in ("DECIMAL", "NUMERIC"):
      precision = getattr(sa_type, "precision", None)
      scale = getattr(sa_type, "scale", None)
      if precision is not None:
        return f"DECIMAL({int(precision)},{int(scale or 0)})"
      return "DECIMAL"

    if base == "DATETIME2":
      return "DATETIME2"
    return base

  def normalize_type(self, type_name: Any) -> str:
    s = str(type_name or "")
    s = _COLLATE_RE.sub("", s)
    s = super().normalize_type(s)
    if s in self.MAX_LENGTH_TYPES:
      return f"{s}(MAX)"
    if s.startswith("DATETIME2("):
      return "DATETIME2"
    if s.startswith("NUMERIC("):
      return "DECIMAL" + s[len("NUMERIC"):]
    return s

  def render_bool(self, value: bool) -> str:
    return "1" if value else "0"

  def render_binary_literal(self, value: bytes) -> str:
    return f"0x{value.hex()}"

  def concat_expression(self, parts: Sequence[str]) -> str:
    if not parts:
      return "''"
    return "(" + " + ".join(parts) + ")"

  def render_param_ref(self, ref: ParamRef) -> str:
    return f"@{ref.name}"

  def ddl_generator(self):
    return MssqlDdlGenerator(self)


class MssqlDdlGenerator(DdlGenerator):
  """DDL for SQL Server: named default constraints, T-SQL triggers, inline TVFs."""

  ADD_COLUMN_KEYWORD = "ADD"

  def _column_definition(self, grain_name: str, table_name: str, column) -> str:
    d = self.dialect
    parts = [self.q(column.name), d.column_type(column)]
    default_sql = d.render_default(column)
    if default_sql is not None:
      constraint = d.default_constraint_name(grain_name, table_name, column.name)
      parts.append(f"CONSTRAINT {self.q(constraint)} DEFAULT {default_sql}")
    parts.append("NULL" if column.nullable else "NOT NULL")
    return " ".join(parts)

  def _create_table_sql(self, grain_name, name, columns, primary_key, extra=()) -> str:
    defs = [self._column_definition(grain_name, name, c) for c in columns]
    if primary_key:
      defs.append(self.pk_clause(grain_name, name, primary_key))
    defs.extend(extra)
    body = ",\n  ".join(defs)
    return f"CREATE TABLE {self.tn(grain_name, name)} (\n  {body}\n)"

  def create_schema(self, grain_name: str) -> DdlResult:
    schema = self.dialect.grain_schema(grain_name)
    literal = schema.replace("'", "''")
    return DdlResult.of(
      f"IF NOT EXISTS (SELECT 1 FROM sys.schemas WHERE name = '{literal}')\n"
      f"BEGIN\n"
      f"  EXEC('CREATE SCHEMA {self.q(schema)}');\n"
      f"END"
    )

  def add_column(self, table, column) -> DdlResult:
    return DdlResult.of(
      f"ALTER TABLE {self.tn(table.grain_name, table.name)} ADD "
      f"{self._column_definition(table.grain_name, table.name, column)}"
    )

  def _drop_default(self, table, column_name: str) -> str:
    constraint = self.dialect.default_constraint_name(table.grain_name, table.name, column_name)
    return f"ALTER TABLE {self.tn(table.grain_name, table.name)} DROP CONSTRAINT {self.q(constraint)}"

  def update_column(self, table, column, actual) -> DdlResult:
    diffs = self.column_differences(column, actual)
    if not diffs:
      return DdlResult.noop()
    d = self.dialect
    tbl = self.tn(table.grain_name, table.name)
    stmts = []
    if "default" in diffs and actual.default is not None:
      stmts.append(self._drop_default(table, column.name))
    if "type" in diffs or "nullable" in diffs:
      null_sql = "NULL" if column.nullable else "NOT NULL"
      stmts.append(
        f"ALTER TABLE {tbl} ALTER COLUMN {self.q(column.name)} {d.column_type(column)} {null_sql}"
      )
    if "default" in diffs:
      default_sql = d.render_default(column)
      if default_sql is not None:
        constraint = d.default_constraint_name(table.grain_name, table.name, column.name)
        stmts.append(
          f"ALTER TABLE {tbl} ADD CONSTRAINT {self.q(constraint)} "
          f"DEFAULT {default_sql} FOR {self.q(column.name)}"
        )
    return DdlResult.of(*stmts)

  def drop_column(self, table, actual) -> DdlResult:
    stmts = []
    if actual.default is not None:
      stmts.append(self._drop_default(table, actual.name))
    stmts.append(
      f"ALTER TABLE {self.tn(table.grain_name, table.name)} DROP COLUMN {self.q(actual.name)}"
    )
    return DdlResult.of(*stmts)

  def drop_index(self, grain_name: str, table_name: str, physical_name: str) -> DdlResult:
    return DdlResult.of(f"DROP INDEX {self.q(physical_name)} ON {self.tn(grain_name, table_name)}")

  # ---------------------------------------------------------------------------
  # Versioning triggers
  # ---------------------------------------------------------------------------
  def create_versioning_trigger(self, table) -> DdlResult:
    d = self.dialect
    name = d.versioning_trigger_name(table.grain_name, table.name)
    schema = d.grain_schema(table.grain_name)
    tbl = self.tn(table.grain_name, table.name)
    rv = self.q(REVISION_COLUMN)
    join_id = " AND ".join(f"i.{self.q(c)} = d.{self.q(c)}" for c in table.primary_key)
    join_t = " AND ".join(f"t.{self.q(c)} = i.{self.q(c)}" for c in table.primary_key)
    return DdlResult.of(
      f"CREATE TRIGGER {d.render_table_identifier(schema, name)} ON {tbl} AFTER UPDATE AS\n"
      f"BEGIN\n"
      f"  SET NOCOUNT ON;\n"
      f"  IF EXISTS (SELECT 1 FROM inserted i JOIN deleted d ON {join_id} WHERE i.{rv} <> d.{rv})\n"
      f"  BEGIN\n"
      f"    ;THROW 50001, '{VERSION_CHECK_MESSAGE}', 1;\n"
      f"  END;\n"
      f"  UPDATE t SET {rv} = t.{rv} + 1 FROM {tbl} t JOIN inserted i ON {join_t};\n"
      f"END"
    )

  def drop_versioning_trigger(self, table) -> DdlResult:
    d = self.dialect
    name = d.versioning_trigger_name(table.grain_name, table.name)
    schema = d.grain_schema(table.grain_name)
    return DdlResult.of(f"DROP TRIGGER {d.render_table_identifier(schema, name)}")

  # ---------------------------------------------------------------------------
  # Parameterized views
  # ---------------------------------------------------------------------------
  def function_sql(self, pv) -> str:
    d = self.dialect
    args = ", ".join(f"@{p.name} {d.map_type(p.datatype)}" for p in pv.parameters.values())
    return (
      f"CREATE FUNCTION {self.tn(pv.grain_name, pv.name)}({args})\n"
      f"RETURNS TABLE AS RETURN (\n"
      f"{d.render_view_select(pv)}\n"
      f")"
    )

  def create_parameterized_view(self, pv) -> DdlResult:
    return DdlResult.of(self.function_sql(pv))

  def drop_parameterized_view(self, grain_name: str, name: str) -> DdlResult:
    return DdlResult.of(f"DROP FUNCTION {self.tn(grain_name, name)}")
