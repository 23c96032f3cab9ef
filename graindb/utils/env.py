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

import os
from typing import Optional


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
  """Get env var as string; empty values count as unset."""
  val = os.getenv(key)
  return val if val not in (None, "") else default


def env_first(*keys: str) -> Optional[str]:
  """Return the value of the first env var in `keys` that is set."""
  for key in keys:
    val = env_str(key)
    if val is not None:
      return val
  return None


def env_bool(key: str, default: bool = False) -> bool:
  """Get env var as boolean."""
  val = os.getenv(key)
  if val is None or not val.strip():
    return default
  return val.strip().lower() in ("1", "true", "yes", "on")

