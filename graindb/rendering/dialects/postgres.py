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
from typing import List, Optional

from graindb.rendering.dialects.base import SqlDialect, VERSION_CHECK_MESSAGE, fingerprint_sql
from graindb.rendering.dialects.ddl import DdlGenerator, DdlResult
from graindb.rendering.expr import ParamRef
from graindb.score.types import (
  BINARY, BOOLEAN, DATETIME, DECIMAL, INTEGER, REVISION_COLUMN, STRING, SURROGATE_COUNT_COLUMN,
)


# Views and functions carry their fingerprint in a comment with this prefix.
FINGERPRINT_PREFIX = "graindb:"

_CAST_SUFFIX_RE = re.compile(r"::[A-Za-z_ ]+(\(\d+(,\s*\d+)?\))?(\[\])?$")


class PostgresDialect(SqlDialect):
  """
  SQL dialect for PostgreSQL. Every grain maps to a schema; all DDL is
  transactional, so a failing grain rolls back completely.
  """

  DIALECT_NAME = "postgres"

  TYPE_ALIASES = {
    "TIMESTAMP WITHOUT TIME ZONE": "TIMESTAMP",
    "CHARACTER VARYING": "VARCHAR",
    "INT": "INTEGER",
    "INT4": "INTEGER",
    "BOOL": "BOOLEAN",
  }

  TRIGGER_EXISTS_SQL = """
    SELECT 1
    FROM pg_trigger t
    JOIN pg_class c ON c.oid = t.tgrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = :schema AND c.relname = :table AND t.tgname = :name
  """

  VIEW_DEFINITIONS_SQL = """
    SELECT c.relname, obj_description(c.oid, 'pg_class')
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = :schema AND c.relkind = 'v'
  """

  FUNCTION_DEFINITIONS_SQL = """
    SELECT p.proname, obj_description(p.oid, 'pg_proc')
    FROM pg_proc p
    JOIN pg_namespace n ON n.oid = p.pronamespace
    WHERE n.nspname = :schema AND p.prorettype <> 'trigger'::regtype
  """

  BACKEND_PID_SQL = "SELECT pg_backend_pid()"

  # ---------------------------------------------------------------------------
  # Capabilities
  # ---------------------------------------------------------------------------
  @property
  def supports_sequences(self) -> bool:
    return True

  @property
  def supports_parameterized_views(self) -> bool:
    return True

  @property
  def supports_materialized_views(self) -> bool:
    return True

  # ---------------------------------------------------------
  # Identifier quoting
  # ---------------------------------------------------------
  def quote_ident(self, ident: str) -> str:
    escaped = ident.replace('"', '""')
    return f"\"{escaped}\""

  # ---------------------------------------------------------
  # Logical type mapping
  # ---------------------------------------------------------
  def map_type(self, datatype, max_length=None, precision=None, scale=None):
    dt = datatype.upper()
    if dt == INTEGER:
      return "INTEGER"
    if dt == STRING:
      return f"VARCHAR({max_length})" if max_length else "TEXT"
    if dt == DATETIME:
      return "TIMESTAMP"
    if dt == DECIMAL:
      if precision:
        return f"NUMERIC({precision},{scale or 0})"
      return "NUMERIC"
    if dt == BOOLEAN:
      return "BOOLEAN"
    if dt == BINARY:
      return "BYTEA"
    return dt

  def normalize_default(self, default):
    if default is None:
      return None
    s = _CAST_SUFFIX_RE.sub("", str(default).strip())
    return super().normalize_default(s)

  def render_binary_literal(self, value: bytes) -> str:
    return f"'\\x{value.hex()}'::bytea"

  def render_param_ref(self, ref: ParamRef) -> str:
    return f"${ref.position}"

  def fingerprint_from_catalog(self, stored: Optional[str]) -> str:
    if stored and stored.startswith(FINGERPRINT_PREFIX):
      return stored[len(FINGERPRINT_PREFIX):]
    return ""

  def ddl_generator(self):
    return PostgresDdlGenerator(self)


class PostgresDdlGenerator(DdlGenerator):
  """DDL for PostgreSQL: plpgsql triggers, SQL functions, comments as fingerprints."""

  def _fingerprint_comment(self, kind: str, target: str, sql: str) -> str:
    return f"COMMENT ON {kind} {target} IS '{FINGERPRINT_PREFIX}{fingerprint_sql(sql)}'"

  # ---------------------------------------------------------------------------
  # Views
  # ---------------------------------------------------------------------------
  def create_view(self, view) -> DdlResult:
    sql = self.view_sql(view)
    return DdlResult.of(
      sql, self._fingerprint_comment("VIEW", self.tn(view.grain_name, view.name), sql)
    )

  # ---------------------------------------------------------------------------
  # Parameterized views
  # ---------------------------------------------------------------------------
  def _function_signature(self, pv) -> str:
    d = self.dialect
    return ", ".join(d.map_type(p.datatype) for p in pv.parameters.values())

  def function_sql(self, pv) -> str:
    d = self.dialect
    args = ", ".join(
      f"{self.q(p.name)} {d.map_type(p.datatype)}" for p in pv.parameters.values()
    )
    returns = ", ".join(
      f"{self.q(alias)} {d.map_type(m.datatype, m.max_length, m.precision, m.scale)}"
      for alias, m in pv.column_types.items()
    )
    return (
      f"CREATE FUNCTION {self.tn(pv.grain_name, pv.name)}({args})\n"
      f"  RETURNS TABLE ({returns}) AS $$\n"
      f"{d.render_view_select(pv)}\n"
      f"$$ LANGUAGE sql STABLE"
    )

  def create_parameterized_view(self, pv) -> DdlResult:
    sql = self.function_sql(pv)
    target = f"{self.tn(pv.grain_name, pv.name)}({self._function_signature(pv)})"
    return DdlResult.of(sql, self._fingerprint_comment("FUNCTION", target, sql))

  def drop_parameterized_view(self, grain_name: str, name: str) -> DdlResult:
    # Live functions are dropped by name; declared signatures may have changed.
    return DdlResult.of(f"DROP FUNCTION {self.tn(grain_name, name)}")

  # ---------------------------------------------------------------------------
  # Versioning triggers
  # ---------------------------------------------------------------------------
  def _trigger_function(self, grain_name: str, trigger_name: str) -> str:
    return self.dialect.render_table_identifier(self.dialect.grain_schema(grain_name), trigger_name)

  def create_versioning_trigger(self, table) -> DdlResult:
    d = self.dialect
    name = d.versioning_trigger_name(table.grain_name, table.name)
    func = self._trigger_function(table.grain_name, name)
    rv = self.q(REVISION_COLUMN)
    function_sql = (
      f"CREATE OR REPLACE FUNCTION {func}() RETURNS trigger AS $$\n"
      f"BEGIN\n"
      f"  IF OLD.{rv} = NEW.{rv} THEN\n"
      f"    NEW.{rv} := NEW.{rv} + 1;\n"
      f"  ELSE\n"
      f"    RAISE EXCEPTION '{VERSION_CHECK_MESSAGE}';\n"
      f"  END IF;\n"
      f"  RETURN NEW;\n"
      f"END;\n"
      f"$$ LANGUAGE plpgsql"
    )
    trigger_sql = (
      f"CREATE TRIGGER {self.q(name)} BEFORE UPDATE ON {self.tn(table.grain_name, table.name)} "
      f"FOR EACH ROW EXECUTE PROCEDURE {func}()"
    )
    return DdlResult.of(function_sql, trigger_sql)

  def drop_versioning_trigger(self, table) -> DdlResult:
    name = self.dialect.versioning_trigger_name(table.grain_name, table.name)
    return DdlResult.of(
      f"DROP TRIGGER IF EXISTS {self.q(name)} ON {self.tn(table.grain_name, table.name)}",
      f"DROP FUNCTION IF EXISTS {self._trigger_function(table.grain_name, name)}()",
    )

  # ---------------------------------------------------------------------------
  # Materialized views
  # ---------------------------------------------------------------------------
  def materialized_view_trigger_names(self, mv) -> List[str]:
    ref = mv.source_ref
    base = f"{self.dialect.physical_name(ref.grain, ref.table)}_{mv.name}"
    return [f"{base}_mvins", f"{base}_mvupd", f"{base}_mvdel"]

  def _mv_function(self, mv) -> str:
    ref = mv.source_ref
    name = f"{self.dialect.physical_name(ref.grain, ref.table)}_{mv.name}_mvtrigger"
    return self.dialect.render_table_identifier(self.dialect.grain_schema(mv.grain_name), name)

  def create_materialized_view_triggers(self, mv) -> DdlResult:
    source_sql, group, sums, counts = self.mv_parts(mv)
    target = self.tn(mv.grain_name, mv.name)
    alias = self.q(mv.name)
    sc = self.q(SURROGATE_COUNT_COLUMN)

    old_match = " AND ".join(f"{self.q(a)} = OLD.{self.q(c)}" for a, c in group)
    minus = (
      [f"{self.q(a)} = {self.q(a)} - COALESCE(OLD.{self.q(c)}, 0)" for a, c in sums]
      + [f"{self.q(a)} = {self.q(a)} - 1" for a in counts]
      + [f"{sc} = {sc} - 1"]
    )
    cols = [a for a, _ in group] + [a for a, _ in sums] + counts + [SURROGATE_COUNT_COLUMN]
    values = (
      [f"NEW.{self.q(c)}" for _, c in group]
      + [f"COALESCE(NEW.{self.q(c)}, 0)" for _, c in sums]
      + ["1" for _ in counts]
      + ["1"]
    )
    plus = (
      [f"{self.q(a)} = {alias}.{self.q(a)} + EXCLUDED.{self.q(a)}" for a, _ in sums]
      + [f"{self.q(a)} = {alias}.{self.q(a)} + 1" for a in counts]
      + [f"{sc} = {alias}.{sc} + 1"]
    )
    func = self._mv_function(mv)
    function_sql = (
      f"CREATE OR REPLACE FUNCTION {func}() RETURNS trigger AS $$\n"
      f"BEGIN\n"
      f"  IF TG_OP IN ('UPDATE', 'DELETE') THEN\n"
      f"    UPDATE {target} SET {', '.join(minus)}\n"
      f"      WHERE {old_match};\n"
      f"    DELETE FROM {target} WHERE {old_match} AND {sc} = 0;\n"
      f"  END IF;\n"
      f"  IF TG_OP IN ('INSERT', 'UPDATE') THEN\n"
      f"    INSERT INTO {target} AS {alias} ({self.qcols(cols)})\n"
      f"      VALUES ({', '.join(values)})\n"
      f"      ON CONFLICT ({self.qcols([a for a, _ in group])})\n"
      f"      DO UPDATE SET {', '.join(plus)};\n"
      f"  END IF;\n"
      f"  RETURN NULL;\n"
      f"END;\n"
      f"$$ LANGUAGE plpgsql"
    )
    stmts = [function_sql]
    events = ("INSERT", "UPDATE", "DELETE")
    for name, event in zip(self.materialized_view_trigger_names(mv), events):
      stmts.append(
        f"CREATE TRIGGER {self.q(name)} AFTER {event} ON {source_sql} "
        f"FOR EACH ROW EXECUTE PROCEDURE {func}()"
      )
    return DdlResult.of(*stmts)

  def drop_materialized_view_triggers(self, mv) -> DdlResult:
    source_sql = self.tn(mv.source_ref.grain, mv.source_ref.table)
    stmts = [
      f"DROP TRIGGER IF EXISTS {self.q(name)} ON {source_sql}"
      for name in self.materialized_view_trigger_names(mv)
    ]
    stmts.append(f"DROP FUNCTION IF EXISTS {self._mv_function(mv)}()")
    return DdlResult.of(*stmts)
