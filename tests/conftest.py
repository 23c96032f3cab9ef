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

from graindb.rendering.dialects.mssql import MssqlDialect
from graindb.rendering.dialects.postgres import PostgresDialect
from graindb.rendering.dialects.sqlite import SqliteDialect
from tests._score_factory import build_shop_score


@pytest.fixture(autouse=True)
def _clean_graindb_env(monkeypatch):
  """No GRAINDB_* setting of the developer's shell leaks into a test."""
  for name in (
    "GRAINDB_SQL_DIALECT",
    "GRAINDB_DIALECT",
    "GRAINDB_PROFILE",
    "GRAINDB_PROFILES_PATH",
    "GRAINDB_ALLOW_DROP_COLUMNS",
    "GRAINDB_DEBUG_PLAN",
  ):
    monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sqlite_dialect():
  return SqliteDialect()


@pytest.fixture
def postgres_dialect():
  return PostgresDialect()


@pytest.fixture
def mssql_dialect():
  return MssqlDialect()


@pytest.fixture
def engine(tmp_path, sqlite_dialect):
  """
  File backed SQLite engine with the dialect's transaction hooks installed.
  A file (not :memory:) so every pooled connection sees the same database.
  """
  eng = create_engine(f"sqlite:///{tmp_path / 'graindb.sqlite'}")
  sqlite_dialect.configure_engine(eng)
  yield eng
  eng.dispose()


@pytest.fixture
def conn(engine):
  with engine.connect() as c:
    yield c


@pytest.fixture
def shop_score():
  """Finalized shop score (customer, orders, country, views, MV)."""
  return build_shop_score().finalize()
