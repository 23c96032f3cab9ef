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

import sys
from pathlib import Path

import pytest


def main():
  """Run the graindb test suite."""
  root = Path(__file__).resolve().parent

  # Ensure repository root is on sys.path so 'graindb' and 'tests' can be imported
  if str(root) not in sys.path:
    sys.path.insert(0, str(root))

  return pytest.main([str(root / "tests"), *sys.argv[1:]])


if __name__ == "__main__":
  raise SystemExit(main())
