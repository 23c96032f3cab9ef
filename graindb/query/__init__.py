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

"""Dialect-independent statement building for table access."""
