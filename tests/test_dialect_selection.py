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

import pytest
from sqlalchemy import create_engine

from graindb.rendering.dialects import dialect_for_engine, get_active_dialect
from graindb.rendering.dialects.mssql import MssqlDialect
from graindb.rendering.dialects.postgres import PostgresDialect
from graindb.rendering.dialects.sqlite import SqliteDialect


class DummyProfile:
  """Simple profile stub used for dialect resolution tests."""

  def __init__(self, dialect: str) -> None:
    self.dialect = dialect


def _forbid_profile(monkeypatch, why: str):
  monkeypatch.setattr(
    "graindb.rendering.dialects.load_profile",
    lambda *args, **kwargs: (_ for _ in ()).throw(AssertionError(why)),
  )


def test_explicit_name_bypasses_env_and_profile(monkeypatch):
  """
  When a name is passed explicitly to get_active_dialect(),
  it must not depend on env vars or profiles.
  """
  _forbid_profile(monkeypatch, "load_profile must not be called for explicit name")

  # Even if an env var is set, the explicit argument should dominate.
  monkeypatch.setenv("GRAINDB_SQL_DIALECT", "mssql")

  dialect = get_active_dialect("sqlite")
  assert isinstance(dialect, SqliteDialect)


def test_env_override_used_without_loading_profile(monkeypatch):
  """
  If GRAINDB_SQL_DIALECT (or GRAINDB_DIALECT) is set,
  get_active_dialect() must not load a profile.
  """
  _forbid_profile(monkeypatch, "load_profile must not be called when env override is set")

  monkeypatch.setenv("GRAINDB_DIALECT", "mssql")

  dialect = get_active_dialect()
  assert isinstance(dialect, MssqlDialect)


def test_profile_dialect_used_when_no_env(monkeypatch):
  """
  If no explicit name and no env overrides are set,
  get_active_dialect() should use profile.dialect.
  """
  monkeypatch.setattr(
    "graindb.rendering.dialects.load_profile",
    lambda *args, **kwargs: DummyProfile(dialect="sqlite"),
  )

  dialect = get_active_dialect()
  assert isinstance(dialect, SqliteDialect)


def test_missing_profiles_file_falls_back_to_postgres(monkeypatch, tmp_path):
  monkeypatch.chdir(tmp_path)
  assert isinstance(get_active_dialect(), PostgresDialect)


def test_aliases_resolve_to_registered_dialects():
  assert isinstance(get_active_dialect("postgresql"), PostgresDialect)
  assert isinstance(get_active_dialect("SQLServer"), MssqlDialect)


def test_dialect_for_engine_uses_backend_name():
  engine = create_engine("sqlite://")
  try:
    assert isinstance(dialect_for_engine(engine), SqliteDialect)
  finally:
    engine.dispose()


def test_unknown_dialect_raises_value_error():
  """
  Passing an unknown dialect name must raise a ValueError,
  listing the available dialects.
  """
  with pytest.raises(ValueError) as excinfo:
    get_active_dialect("does_not_exist")

  msg = str(excinfo.value).lower()
  assert "unknown sql dialect" in msg
  assert "postgres" in msg and "sqlite" in msg
