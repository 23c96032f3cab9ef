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

from typing import List, Optional

from sqlalchemy import event

from graindb.errors import DialectError
from graindb.rendering.dialects.base import SqlDialect, VERSION_CHECK_MESSAGE
from graindb.rendering.dialects.ddl import DdlGenerator, DdlResult
from graindb.score.types import (
  BINARY, BOOLEAN, DATETIME, DECIMAL, INTEGER, REVISION_COLUMN, STRING, SURROGATE_COUNT_COLUMN,
)


GRAIN_SEPARATOR = "__"


def _on_connect(dbapi_connection, connection_record):
  dbapi_connection.isolation_level = None
  cursor = dbapi_connection.cursor()
  cursor.execute("PRAGMA foreign_keys=ON")
  cursor.close()


def _on_begin(conn):
  conn.exec_driver_sql("BEGIN")


class SqliteDialect(SqlDialect):
  """
  SQL dialect for SQLite.

  SQLite has no schemas: grain objects live in the main database with the
  grain name as prefix (<grain>__<name>). Columns cannot be altered and
  constraints cannot be added to existing tables, so such changes are
  reported as unsupported instead of being emulated.
  """

  DIALECT_NAME = "sqlite"

  TRIGGER_EXISTS_SQL = """
    SELECT 1 FROM sqlite_master
    WHERE type = 'trigger' AND tbl_name = :table AND name = :name
  """

  VIEW_DEFINITIONS_SQL = "SELECT name, sql FROM sqlite_master WHERE type = 'view'"

  # ---------------------------------------------------------------------------
  # Capabilities
  # ---------------------------------------------------------------------------
  @property
  def supports_materialized_views(self) -> bool:
    return True

  @property
  def supports_alter_column(self) -> bool:
    return False

  @property
  def inline_foreign_keys(self) -> bool:
    return True

  def configure_engine(self, engine) -> None:
    """
    pysqlite defers BEGIN until the first DML statement, which leaves DDL
    outside the transaction. Take over transaction control so a grain's DDL
    rolls back as a unit. Installing the hooks twice is harmless.
    """
    if not event.contains(engine, "connect", _on_connect):
      event.listen(engine, "connect", _on_connect)
    if not event.contains(engine, "begin", _on_begin):
      event.listen(engine, "begin", _on_begin)

  def check_connection(self, conn) -> None:
    engine = conn.engine
    if not event.contains(engine, "begin", _on_begin):
      raise DialectError(
        f"SQLite engine {engine.url!r} runs DDL outside transactions; call "
        f"SqliteDialect().configure_engine(engine) (or create it with "
        f"create_engine_for_profile) before synchronizing."
      )

  # ---------------------------------------------------------
  # Identifier quoting and physical naming
  # ---------------------------------------------------------
  def quote_ident(self, ident: str) -> str:
    escaped = ident.replace('"', '""')
    return f"\"{escaped}\""

  def grain_schema(self, grain_name: str) -> Optional[str]:
    return None

  def physical_name(self, grain_name: str, name: str) -> str:
    return f"{grain_name}{GRAIN_SEPARATOR}{name}"

  def logical_name(self, grain_name: str, physical: str) -> Optional[str]:
    prefix = f"{grain_name}{GRAIN_SEPARATOR}"
    if physical.startswith(prefix):
      return physical[len(prefix):]
    return None

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
      return "DATETIME"
    if dt == DECIMAL:
      if precision:
        return f"NUMERIC({precision},{scale or 0})"
      return "NUMERIC"
    if dt == BOOLEAN:
      return "BOOLEAN"
    if dt == BINARY:
      return "BLOB"
    return dt

  def render_bool(self, value: bool) -> str:
    return "1" if value else "0"

  def ddl_generator(self):
    return SqliteDdlGenerator(self)


class SqliteDdlGenerator(DdlGenerator):

  def update_column(self, table, column, actual) -> DdlResult:
    diffs = self.column_differences(column, actual)
    if not diffs:
      return DdlResult.noop()
    return DdlResult.unsupported(
      f"sqlite cannot alter column '{table.name}.{column.name}' ({', '.join(diffs)} changed)."
    )

  def update_primary_key(self, table, actual_pk) -> DdlResult:
    live = list(actual_pk.columns) if actual_pk else []
    if live == list(table.primary_key):
      return DdlResult.noop()
    return DdlResult.unsupported(
      f"sqlite cannot change the primary key of existing table '{table.name}'."
    )

  def add_foreign_key(self, table, fk) -> DdlResult:
    return DdlResult.unsupported(
      f"sqlite cannot add foreign key on ({', '.join(fk.columns)}) to existing table "
      f"'{table.name}'."
    )

  def drop_foreign_key(self, table, actual_fk) -> DdlResult:
    return DdlResult.unsupported(
      f"sqlite cannot drop foreign key on ({', '.join(actual_fk.columns)}) from table "
      f"'{table.name}'."
    )

  # ---------------------------------------------------------------------------
  # Versioning triggers
  # ---------------------------------------------------------------------------
  def create_versioning_trigger(self, table) -> DdlResult:
    # One AFTER trigger does check and increment. Its own UPDATE does not
    # fire it again while recursive_triggers is off.
    d = self.dialect
    name = d.versioning_trigger_name(table.grain_name, table.name)
    tbl = self.tn(table.grain_name, table.name)
    rv = self.q(REVISION_COLUMN)
    return DdlResult.of(
      f"CREATE TRIGGER {self.q(name)} AFTER UPDATE ON {tbl} FOR EACH ROW\n"
      f"BEGIN\n"
      f"  SELECT RAISE(ABORT, '{VERSION_CHECK_MESSAGE}') WHERE NEW.{rv} <> OLD.{rv};\n"
      f"  UPDATE {tbl} SET {rv} = {rv} + 1 WHERE rowid = NEW.rowid;\n"
      f"END"
    )

  def drop_versioning_trigger(self, table) -> DdlResult:
    name = self.dialect.versioning_trigger_name(table.grain_name, table.name)
    return DdlResult.of(f"DROP TRIGGER IF EXISTS {self.q(name)}")

  # ---------------------------------------------------------------------------
  # Materialized views
  # ---------------------------------------------------------------------------
  def materialized_view_trigger_names(self, mv) -> List[str]:
    ref = mv.source_ref
    base = f"{self.dialect.physical_name(ref.grain, ref.table)}_{mv.name}"
    return [f"{base}_mvins", f"{base}_mvupd", f"{base}_mvdel"]

  def create_materialized_view_triggers(self, mv) -> DdlResult:
    source_sql, group, sums, counts = self.mv_parts(mv)
    target = self.tn(mv.grain_name, mv.name)
    sc = self.q(SURROGATE_COUNT_COLUMN)
    ins_name, upd_name, del_name = self.materialized_view_trigger_names(mv)

    def match(row: str) -> str:
      return " AND ".join(f"{self.q(a)} = {row}.{self.q(c)}" for a, c in group)

    def add(row: str) -> List[str]:
      cols = [a for a, _ in group] + [a for a, _ in sums] + counts + [SURROGATE_COUNT_COLUMN]
      zeros = [f"{row}.{self.q(c)}" for _, c in group] + ["0"] * (len(cols) - len(group))
      sets = (
        [f"{self.q(a)} = {self.q(a)} + COALESCE({row}.{self.q(c)}, 0)" for a, c in sums]
        + [f"{self.q(a)} = {self.q(a)} + 1" for a in counts]
        + [f"{sc} = {sc} + 1"]
      )
      return [
        f"  INSERT OR IGNORE INTO {target} ({self.qcols(cols)}) VALUES ({', '.join(zeros)});",
        f"  UPDATE {target} SET {', '.join(sets)} WHERE {match(row)};",
      ]

    def remove(row: str) -> List[str]:
      sets = (
        [f"{self.q(a)} = {self.q(a)} - COALESCE({row}.{self.q(c)}, 0)" for a, c in sums]
        + [f"{self.q(a)} = {self.q(a)} - 1" for a in counts]
        + [f"{sc} = {sc} - 1"]
      )
      return [
        f"  UPDATE {target} SET {', '.join(sets)} WHERE {match(row)};",
        f"  DELETE FROM {target} WHERE {match(row)} AND {sc} = 0;",
      ]

    # Only changes to grouped or summed fields touch the aggregate; this also
    # keeps the revision bump of the versioning trigger from firing it.
    watched = self.qcols(sorted({c for _, c in group} | {c for _, c in sums}))

    def trigger(name: str, event: str, body: List[str]) -> str:
      return "\n".join(
        [f"CREATE TRIGGER {self.q(name)} AFTER {event} ON {source_sql} FOR EACH ROW", "BEGIN"]
        + body
        + ["END"]
      )

    return DdlResult.of(
      trigger(ins_name, "INSERT", add("NEW")),
      trigger(upd_name, f"UPDATE OF {watched}", remove("OLD") + add("NEW")),
      trigger(del_name, "DELETE", remove("OLD")),
    )

  def drop_materialized_view_triggers(self, mv) -> DdlResult:
    return DdlResult.of(
      *(f"DROP TRIGGER IF EXISTS {self.q(n)}" for n in self.materialized_view_trigger_names(mv))
    )
