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

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from graindb.rendering.dialects.base import fingerprint_sql
from graindb.score.types import SURROGATE_COUNT_COLUMN


STATEMENTS = "statements"
NOOP = "noop"
UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class DdlResult:
  """
  Outcome of a DDL operation: the statements to run, nothing to do, or a
  reason why the dialect cannot express the change.
  """
  kind: str
  statements: Tuple[str, ...] = ()
  reason: str = ""

  @classmethod
  def of(cls, *statements: str) -> "DdlResult":
    stmts = tuple(s for s in statements if s)
    if not stmts:
      return cls(NOOP)
    return cls(STATEMENTS, stmts)

  @classmethod
  def noop(cls) -> "DdlResult":
    return cls(NOOP)

  @classmethod
  def unsupported(cls, reason: str) -> "DdlResult":
    return cls(UNSUPPORTED, (), reason)

  @property
  def is_noop(self) -> bool:
    return self.kind == NOOP

  @property
  def is_unsupported(self) -> bool:
    return self.kind == UNSUPPORTED

  def __add__(self, other: "DdlResult") -> "DdlResult":
    if self.is_unsupported:
      return self
    if other.is_unsupported:
      return other
    return DdlResult.of(*self.statements, *other.statements)


class DdlGenerator:
  """
  Produces DDL for one dialect. Operations return a DdlResult and never touch
  the database, except where a live catalog check is explicitly required
  (versioning triggers).

  The base implementation emits ANSI/PostgreSQL flavoured statements;
  concrete generators override what their engine spells differently.
  """

  ADD_COLUMN_KEYWORD = "ADD COLUMN"

  def __init__(self, dialect):
    self.dialect = dialect

  # ---------------------------------------------------------------------------
  # Helpers
  # ---------------------------------------------------------------------------
  def q(self, name: str) -> str:
    return self.dialect.render_identifier(name)

  def qcols(self, names: Sequence[str]) -> str:
    return ", ".join(self.q(n) for n in names)

  def tn(self, grain_name: str, name: str) -> str:
    return self.dialect.table_name(grain_name, name)

  def column_differences(self, column, actual) -> List[str]:
    """Which aspects of a live column differ from its declaration."""
    d = self.dialect
    diffs = []
    if d.normalize_type(d.column_type(column)) != d.normalize_type(actual.type):
      diffs.append("type")
    if bool(column.nullable) != bool(actual.nullable):
      diffs.append("nullable")
    if d.normalize_default(d.render_default(column)) != d.normalize_default(actual.default):
      diffs.append("default")
    return diffs

  def fk_clause(self, table, fk) -> str:
    d = self.dialect
    sql = (
      f"CONSTRAINT {self.q(d.fk_name(table.grain_name, table.name, fk))} "
      f"FOREIGN KEY ({self.qcols(fk.columns)}) "
      f"REFERENCES {self.tn(fk.ref_grain, fk.ref_table)} ({self.qcols(fk.ref_columns)})"
    )
    if fk.on_delete != "NO ACTION":
      sql += f" ON DELETE {fk.on_delete}"
    if fk.on_update != "NO ACTION":
      sql += f" ON UPDATE {fk.on_update}"
    return sql

  def pk_clause(self, grain_name: str, name: str, columns: Sequence[str]) -> str:
    return (
      f"CONSTRAINT {self.q(self.dialect.pk_name(grain_name, name))} "
      f"PRIMARY KEY ({self.qcols(columns)})"
    )

  # ---------------------------------------------------------------------------
  # Schemas
  # ---------------------------------------------------------------------------
  def create_schema(self, grain_name: str) -> DdlResult:
    schema = self.dialect.grain_schema(grain_name)
    if not schema:
      return DdlResult.noop()
    return DdlResult.of(f"CREATE SCHEMA IF NOT EXISTS {self.q(schema)}")

  # ---------------------------------------------------------------------------
  # Tables and columns
  # ---------------------------------------------------------------------------
  def _create_table_sql(self, grain_name, name, columns, primary_key, extra=()) -> str:
    defs = [self.dialect.render_column_definition(c) for c in columns]
    if primary_key:
      defs.append(self.pk_clause(grain_name, name, primary_key))
    defs.extend(extra)
    body = ",\n  ".join(defs)
    return f"CREATE TABLE {self.tn(grain_name, name)} (\n  {body}\n)"

  def create_table(self, table) -> DdlResult:
    extra = []
    if self.dialect.inline_foreign_keys:
      extra = [self.fk_clause(table, fk) for fk in table.foreign_keys]
    return DdlResult.of(
      self._create_table_sql(
        table.grain_name, table.name, table.physical_columns, table.primary_key, extra
      )
    )

  def drop_table(self, grain_name: str, name: str) -> DdlResult:
    return DdlResult.of(f"DROP TABLE {self.tn(grain_name, name)}")

  def add_column(self, table, column) -> DdlResult:
    return DdlResult.of(
      f"ALTER TABLE {self.tn(table.grain_name, table.name)} "
      f"{self.ADD_COLUMN_KEYWORD} {self.dialect.render_column_definition(column)}"
    )

  def update_column(self, table, column, actual) -> DdlResult:
    diffs = self.column_differences(column, actual)
    if not diffs:
      return DdlResult.noop()
    d = self.dialect
    alter = f"ALTER TABLE {self.tn(table.grain_name, table.name)} ALTER COLUMN {self.q(column.name)}"
    stmts = []
    if "type" in diffs:
      new_type = d.column_type(column)
      stmts.append(f"{alter} TYPE {new_type} USING {self.q(column.name)}::{new_type}")
    if "default" in diffs:
      default_sql = d.render_default(column)
      stmts.append(f"{alter} SET DEFAULT {default_sql}" if default_sql is not None
                   else f"{alter} DROP DEFAULT")
    if "nullable" in diffs:
      stmts.append(f"{alter} DROP NOT NULL" if column.nullable else f"{alter} SET NOT NULL")
    return DdlResult.of(*stmts)

  def drop_column(self, table, actual) -> DdlResult:
    return DdlResult.of(
      f"ALTER TABLE {self.tn(table.grain_name, table.name)} DROP COLUMN {self.q(actual.name)}"
    )

  def update_primary_key(self, table, actual_pk) -> DdlResult:
    declared = list(table.primary_key)
    live = list(actual_pk.columns) if actual_pk else []
    if declared == live:
      return DdlResult.noop()
    tbl = self.tn(table.grain_name, table.name)
    stmts = []
    if live and actual_pk.name:
      stmts.append(f"ALTER TABLE {tbl} DROP CONSTRAINT {self.q(actual_pk.name)}")
    if declared:
      stmts.append(f"ALTER TABLE {tbl} ADD {self.pk_clause(table.grain_name, table.name, declared)}")
    return DdlResult.of(*stmts)

  # ---------------------------------------------------------------------------
  # Indices
  # ---------------------------------------------------------------------------
  def create_index(self, grain_name: str, index) -> DdlResult:
    name = self.dialect.index_name(grain_name, index.name)
    return DdlResult.of(
      f"CREATE INDEX {self.q(name)} ON {self.tn(grain_name, index.table)} "
      f"({self.qcols(index.columns)})"
    )

  def drop_index(self, grain_name: str, table_name: str, physical_name: str) -> DdlResult:
    schema = self.dialect.grain_schema(grain_name)
    return DdlResult.of(f"DROP INDEX {self.dialect.render_table_identifier(schema, physical_name)}")

  # ---------------------------------------------------------------------------
  # Foreign keys
  # ---------------------------------------------------------------------------
  def add_foreign_key(self, table, fk) -> DdlResult:
    return DdlResult.of(
      f"ALTER TABLE {self.tn(table.grain_name, table.name)} ADD {self.fk_clause(table, fk)}"
    )

  def drop_foreign_key(self, table, actual_fk) -> DdlResult:
    return DdlResult.of(
      f"ALTER TABLE {self.tn(table.grain_name, table.name)} "
      f"DROP CONSTRAINT {self.q(actual_fk.name)}"
    )

  # ---------------------------------------------------------------------------
  # Versioning triggers
  # ---------------------------------------------------------------------------
  def create_versioning_trigger(self, table) -> DdlResult:
    return DdlResult.unsupported(
      f"{self.dialect.DIALECT_NAME} has no versioning trigger implementation."
    )

  def drop_versioning_trigger(self, table) -> DdlResult:
    return DdlResult.unsupported(
      f"{self.dialect.DIALECT_NAME} has no versioning trigger implementation."
    )

  def update_versioning_trigger(self, conn, table) -> DdlResult:
    """
    Reconcile the versioning trigger of a table with its declaration. Trigger
    presence is read from the live catalog every time.
    """
    d = self.dialect
    name = d.versioning_trigger_name(table.grain_name, table.name)
    exists = d.trigger_exists(conn, table.grain_name, table.name, name)
    if table.is_versioned and not exists:
      return self.create_versioning_trigger(table)
    if not table.is_versioned and exists:
      return self.drop_versioning_trigger(table)
    return DdlResult.noop()

  # ---------------------------------------------------------------------------
  # Views
  # ---------------------------------------------------------------------------
  def view_sql(self, view) -> str:
    return (
      f"CREATE VIEW {self.tn(view.grain_name, view.name)} AS\n"
      f"{self.dialect.render_view_select(view)}"
    )

  def view_fingerprint(self, view) -> str:
    return fingerprint_sql(self.view_sql(view))

  def create_view(self, view) -> DdlResult:
    return DdlResult.of(self.view_sql(view))

  def drop_view(self, grain_name: str, name: str) -> DdlResult:
    return DdlResult.of(f"DROP VIEW {self.tn(grain_name, name)}")

  # ---------------------------------------------------------------------------
  # Parameterized views
  # ---------------------------------------------------------------------------
  def function_sql(self, pv) -> Optional[str]:
    return None

  def function_fingerprint(self, pv) -> str:
    return fingerprint_sql(self.function_sql(pv) or "")

  def create_parameterized_view(self, pv) -> DdlResult:
    return DdlResult.unsupported(
      f"{self.dialect.DIALECT_NAME} does not support parameterized views."
    )

  def drop_parameterized_view(self, grain_name: str, name: str) -> DdlResult:
    return DdlResult.unsupported(
      f"{self.dialect.DIALECT_NAME} does not support parameterized views."
    )

  # ---------------------------------------------------------------------------
  # Materialized views
  # ---------------------------------------------------------------------------
  def mv_parts(self, mv):
    """
    Split a materialized view into (source table sql, group columns, sum
    columns, count aliases); column pairs are (alias, source column name).
    """
    ref = mv.source_ref
    group, sums, counts = [], [], []
    for alias, expr in mv.columns.items():
      if alias in mv.group_by:
        group.append((alias, expr.column_name))
      elif expr.arg is not None:
        sums.append((alias, expr.arg.column_name))
      else:
        counts.append(alias)
    return self.tn(ref.grain, ref.table), group, sums, counts

  def materialized_view_fill_sql(self, mv) -> str:
    source_sql, group, sums, counts = self.mv_parts(mv)
    target_cols = [a for a, _ in group] + [a for a, _ in sums] + counts + [SURROGATE_COUNT_COLUMN]
    select = (
      [self.q(c) for _, c in group]
      + [f"COALESCE(SUM({self.q(c)}), 0)" for _, c in sums]
      + ["COUNT(*)" for _ in counts]
      + ["COUNT(*)"]
    )
    return (
      f"INSERT INTO {self.tn(mv.grain_name, mv.name)} ({self.qcols(target_cols)})\n"
      f"  SELECT {', '.join(select)}\n"
      f"  FROM {source_sql}\n"
      f"  GROUP BY {self.qcols([c for _, c in group])}"
    )

  def create_materialized_view(self, mv) -> DdlResult:
    if not self.dialect.supports_materialized_views:
      return DdlResult.unsupported(
        f"{self.dialect.DIALECT_NAME} does not support materialized views."
      )
    return DdlResult.of(
      self._create_table_sql(mv.grain_name, mv.name, mv.physical_columns, mv.primary_key),
      self.materialized_view_fill_sql(mv),
    )

  def drop_materialized_view(self, grain_name: str, name: str) -> DdlResult:
    if not self.dialect.supports_materialized_views:
      return DdlResult.unsupported(
        f"{self.dialect.DIALECT_NAME} does not support materialized views."
      )
    return self.drop_table(grain_name, name)

  def materialized_view_trigger_names(self, mv) -> List[str]:
    return []

  def create_materialized_view_triggers(self, mv) -> DdlResult:
    return DdlResult.unsupported(
      f"{self.dialect.DIALECT_NAME} does not support materialized views."
    )

  def drop_materialized_view_triggers(self, mv) -> DdlResult:
    return DdlResult.unsupported(
      f"{self.dialect.DIALECT_NAME} does not support materialized views."
    )
