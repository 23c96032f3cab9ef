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

from graindb.utils.env import env_bool


@dataclass(frozen=True)
class SyncPolicy:
  # Safety: never auto-drop columns by default.
  allow_drop_columns: bool = False

  # Debug output for planner introspection and decisions.
  debug_plan: bool = False


def load_sync_policy(profile=None) -> SyncPolicy:
  """Policy from the profile (if given), overridden by environment variables."""
  allow_drop = getattr(profile, "allow_drop_columns", False)
  debug_plan = getattr(profile, "debug_plan", False)
  return SyncPolicy(
    allow_drop_columns=env_bool("GRAINDB_ALLOW_DROP_COLUMNS", allow_drop),
    debug_plan=env_bool("GRAINDB_DEBUG_PLAN", debug_plan),
  )
