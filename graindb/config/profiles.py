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
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from graindb.utils.env import env_str

"""
Profile loading for graindb.

Profiles define environment-specific configuration such as:
- the SQL dialect to generate DDL for
- how to reach the database (a SQLAlchemy URL, given directly or via an
  environment variable so credentials stay out of the file)
- synchronizer options

They do NOT define the score itself; that is declared in code.
"""

PROFILES_FILENAME = "graindb_profiles.yaml"


@dataclass
class Profile:
  name: str

  # Dialect used for DDL generation (unless env override)
  dialect: str

  # SQLAlchemy URL, e.g. "postgresql+psycopg2://user@host/db"
  database_url: Optional[str] = None

  # Synchronizer options
  allow_drop_columns: bool = False
  debug_plan: bool = False

  # Extra keyword arguments for sqlalchemy.create_engine
  engine_options: Optional[Dict[str, Any]] = None


def _find_profiles_path(explicit_path: str | None = None) -> Path:
  """
  Locate graindb_profiles.yaml in several common locations:

  1. explicit_path argument (if provided and exists)
  2. GRAINDB_PROFILES_PATH env var (if set and exists)
  3. common fallback locations relative to the CWD

  Raises:
      FileNotFoundError: if no suitable file can be found.
  """
  candidates: list[Path] = []

  # 1) explicit argument
  if explicit_path:
    candidates.append(Path(explicit_path))

  # 2) env var
  env_path = env_str("GRAINDB_PROFILES_PATH")
  if env_path:
    candidates.append(Path(env_path))

  # 3) fallbacks
  candidates += [
    Path.cwd() / PROFILES_FILENAME,
    Path.cwd() / "config" / PROFILES_FILENAME,
  ]

  for c in candidates:
    if c and c.exists():
      return c

  raise FileNotFoundError(
    f"{PROFILES_FILENAME} not found in expected locations. "
    "Provide an explicit path or configure GRAINDB_PROFILES_PATH."
  )


def load_profile(profiles_path: Optional[str] = None, name: Optional[str] = None) -> Profile:
  """
  Load and return the requested (or active) profile.

  Resolution order for the profile name:
    - `name` argument
    - GRAINDB_PROFILE env var
    - `default_profile` key in graindb_profiles.yaml
    - default 'dev'
  """
  path = _find_profiles_path(profiles_path)

  with open(path, "r") as f:
    data = yaml.safe_load(f) or {}

  active = name or env_str("GRAINDB_PROFILE") or data.get("default_profile", "dev")
  profiles = data.get("profiles") or {}

  if active not in profiles:
    available = ", ".join(sorted(profiles)) if profiles else "(none)"
    raise KeyError(
      f"Profile '{active}' not found in {PROFILES_FILENAME} "
      f"at {path}. Available profiles: {available}."
    )

  p = profiles[active] or {}

  database_url = p.get("database_url")
  url_env = p.get("database_url_env")
  if url_env:
    database_url = env_str(url_env, database_url)

  return Profile(
    name=active,
    dialect=p.get("dialect", "postgres"),
    database_url=database_url,
    allow_drop_columns=bool(p.get("allow_drop_columns", False)),
    debug_plan=bool(p.get("debug_plan", False)),
    engine_options=p.get("engine_options", {}) or {},
  )


def create_engine_for_profile(profile: Profile) -> Engine:
  """
  Build the SQLAlchemy engine for a profile and let the profile's dialect
  install its engine hooks.
  """
  from graindb.rendering.dialects import get_active_dialect

  if not profile.database_url:
    raise ValueError(
      f"Profile '{profile.name}' has no database_url. "
      "Set database_url or database_url_env in the profile."
    )

  engine = create_engine(profile.database_url, **(profile.engine_options or {}))
  get_active_dialect(profile.dialect).configure_engine(engine)
  return engine
