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

from typing import List, Optional, Type

from graindb.config.profiles import load_profile
from graindb.rendering.dialects.base import SqlDialect
from graindb.rendering.dialects.mssql import MssqlDialect
from graindb.rendering.dialects.postgres import PostgresDialect
from graindb.rendering.dialects.sqlite import SqliteDialect
from graindb.utils.env import env_first

"""
SQL dialect adapters.

Each dialect implements SqlDialect and knows how to render Expr trees,
views and DDL into concrete SQL strings for its engine.
"""

# Registry of known dialects.
_DIALECT_REGISTRY: dict[str, Type[SqlDialect]] = {
  "postgres": PostgresDialect,
  "sqlite": SqliteDialect,
  "mssql": MssqlDialect,
}

# Common spellings of registered dialects (SQLAlchemy URL backend names).
_ALIASES = {
  "postgresql": "postgres",
  "sqlite3": "sqlite",
  "sqlserver": "mssql",
}


def get_available_dialect_names() -> List[str]:
  return sorted(_DIALECT_REGISTRY)


def _resolve_dialect_name(explicit: Optional[str] = None) -> str:
  """
  Resolve a dialect name from (in order):

  1. explicit argument
  2. environment variables (GRAINDB_SQL_DIALECT, GRAINDB_DIALECT)
  3. active profile.dialect
  4. hard fallback 'postgres'
  """
  # 1) Explicit argument
  if explicit:
    return explicit.lower()

  # 2) Env overrides
  env_name = env_first("GRAINDB_SQL_DIALECT", "GRAINDB_DIALECT")
  if env_name:
    return env_name.lower()

  # 3) Profile.dialect
  try:
    profile = load_profile()
    if profile.dialect:
      return profile.dialect.lower()
  except (FileNotFoundError, KeyError):
    # No usable profile: fall through to the default
    pass

  # 4) Hard fallback
  return "postgres"


def get_active_dialect(name: Optional[str] = None) -> SqlDialect:
  """
  Return an instance of the active SqlDialect.

  Raises:
      ValueError: if the resolved name is not registered.
  """
  dialect_name = _resolve_dialect_name(name)
  dialect_name = _ALIASES.get(dialect_name, dialect_name)

  try:
    dialect_cls = _DIALECT_REGISTRY[dialect_name]
  except KeyError as exc:
    available = ", ".join(get_available_dialect_names())
    raise ValueError(
      f"Unknown SQL dialect: {dialect_name!r}. "
      f"Available dialects: {available}."
    ) from exc

  return dialect_cls()


def dialect_for_engine(engine) -> SqlDialect:
  """Pick the dialect matching a SQLAlchemy engine's backend."""
  return get_active_dialect(engine.dialect.name)
