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


class GrainDbError(Exception):
  """Base class for all graindb errors."""


class ModelError(GrainDbError):
  """
  The declared score violates an invariant (duplicate alias, ungrouped
  column, unresolved reference, ...). Raised at finalize time, before any
  database interaction.
  """


class DialectError(GrainDbError):
  """A dialect could not talk to the connection (catalog query failed)."""


class UnsupportedOperationError(GrainDbError):
  """A DDL operation has no representation on the target dialect."""

  def __init__(self, message: str, *, grain: str | None = None, op: str | None = None):
    super().__init__(message)
    self.grain = grain
    self.op = op


class ConvergenceError(GrainDbError):
  """A DDL statement failed while applying a grain; the grain was rolled back."""

  def __init__(self, message: str, *, grain: str, op: str | None = None, sql: str | None = None):
    super().__init__(message)
    self.grain = grain
    self.op = op
    self.sql = sql


class ConcurrencyViolationError(GrainDbError):
  """
  Optimistic lock mismatch: the row was changed by someone else since it was
  read. Retrying is up to the caller.
  """


class ResourceLeakError(GrainDbError):
  """Too many data accessors are open in one call context."""


class ArgumentContractError(GrainDbError):
  """Caller-supplied filter arguments do not match the statement shape."""


class ContextStateError(GrainDbError):
  """A call context was used in the wrong lifecycle state."""
