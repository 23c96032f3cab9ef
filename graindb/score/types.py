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

"""
Semantic column types of the score.

Dialects map these canonical names to physical type literals. The names are
intentionally upper-case strings so they can be compared and logged as-is.
"""

INTEGER = "INTEGER"
STRING = "STRING"
DATETIME = "DATETIME"
DECIMAL = "DECIMAL"
BOOLEAN = "BOOLEAN"
BINARY = "BINARY"

SEMANTIC_TYPES = (INTEGER, STRING, DATETIME, DECIMAL, BOOLEAN, BINARY)

# Hidden optimistic-lock counter carried by every writable table.
REVISION_COLUMN = "recversion"

# Hidden row counter of materialized views; rows are removed when it drops to 0.
SURROGATE_COUNT_COLUMN = "surrogate_count"
