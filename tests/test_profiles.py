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

import textwrap

import pytest
from sqlalchemy import text

from graindb.config.profiles import PROFILES_FILENAME, create_engine_for_profile, load_profile
from graindb.sync.policy import load_sync_policy
from graindb.utils.env import env_bool, env_first, env_str


PROFILES_YAML = textwrap.dedent(
  """
  default_profile: dev
  profiles:
    dev:
      dialect: sqlite
      database_url: "sqlite://"
    prod:
      dialect: postgres
      database_url_env: SHOP_DATABASE_URL
      allow_drop_columns: true
      engine_options:
        pool_pre_ping: true
  """
)


@pytest.fixture
def profiles_file(tmp_path):
  path = tmp_path / PROFILES_FILENAME
  path.write_text(PROFILES_YAML)
  return path


def test_default_profile_is_loaded(profiles_file):
  profile = load_profile(str(profiles_file))
  assert profile.name == "dev"
  assert profile.dialect == "sqlite"
  assert profile.database_url == "sqlite://"
  assert profile.allow_drop_columns is False


def test_profile_selected_by_env_with_url_from_env(profiles_file, monkeypatch):
  monkeypatch.setenv("GRAINDB_PROFILE", "prod")
  monkeypatch.setenv("SHOP_DATABASE_URL", "postgresql+psycopg2://shop@db/shop")
  profile = load_profile(str(profiles_file))
  assert profile.name == "prod"
  assert profile.database_url == "postgresql+psycopg2://shop@db/shop"
  assert profile.allow_drop_columns is True
  assert profile.engine_options == {"pool_pre_ping": True}


def test_profiles_path_from_env(profiles_file, monkeypatch):
  monkeypatch.setenv("GRAINDB_PROFILES_PATH", str(profiles_file))
  assert load_profile(name="prod").dialect == "postgres"


def test_profiles_file_found_in_config_dir(tmp_path, monkeypatch):
  (tmp_path / "config").mkdir()
  (tmp_path / "config" / PROFILES_FILENAME).write_text(PROFILES_YAML)
  monkeypatch.chdir(tmp_path)
  assert load_profile().name == "dev"


def test_missing_file_raises_file_not_found(tmp_path, monkeypatch):
  monkeypatch.chdir(tmp_path)
  with pytest.raises(FileNotFoundError):
    load_profile()


def test_unknown_profile_lists_available_ones(profiles_file):
  with pytest.raises(KeyError) as excinfo:
    load_profile(str(profiles_file), name="staging")
  assert "dev, prod" in str(excinfo.value)


def test_engine_for_profile_installs_dialect_hooks(profiles_file):
  engine = create_engine_for_profile(load_profile(str(profiles_file)))
  try:
    with engine.connect() as conn:
      assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
  finally:
    engine.dispose()


def test_engine_for_profile_requires_url(profiles_file):
  profile = load_profile(str(profiles_file), name="prod")
  with pytest.raises(ValueError, match="no database_url"):
    create_engine_for_profile(profile)


def test_sync_policy_from_profile_and_env(profiles_file, monkeypatch):
  prod = load_profile(str(profiles_file), name="prod")
  assert load_sync_policy(prod).allow_drop_columns is True
  assert load_sync_policy().allow_drop_columns is False

  monkeypatch.setenv("GRAINDB_ALLOW_DROP_COLUMNS", "0")
  monkeypatch.setenv("GRAINDB_DEBUG_PLAN", "yes")
  policy = load_sync_policy(prod)
  assert policy.allow_drop_columns is False
  assert policy.debug_plan is True


def test_env_helpers(monkeypatch):
  monkeypatch.setenv("A_EMPTY", "")
  monkeypatch.setenv("B_SET", "x")
  assert env_str("A_EMPTY", "d") == "d"
  assert env_first("A_EMPTY", "B_SET") == "x"
  monkeypatch.setenv("C_FLAG", " On ")
  assert env_bool("C_FLAG") is True
  assert env_bool("MISSING_FLAG", True) is True
