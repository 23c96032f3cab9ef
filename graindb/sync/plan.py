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

from dataclasses import dataclass, field
from typing import List, Literal, Optional


StepOp = Literal[
  "DROP_VIEW",
  "DROP_FUNCTION",
  "DROP_MV_TRIGGERS",
  "DROP_MATERIALIZED_VIEW",
  "CREATE_SCHEMA",
  "CREATE_TABLE",
  "ADD_COLUMN",
  "UPDATE_COLUMN",
  "DROP_COLUMN",
  "UPDATE_PRIMARY_KEY",
  "DROP_INDEX",
  "CREATE_INDEX",
  "DROP_FOREIGN_KEY",
  "ADD_FOREIGN_KEY",
  "UPDATE_VERSIONING_TRIGGER",
  "CREATE_VIEW",
  "CREATE_FUNCTION",
  "CREATE_MATERIALIZED_VIEW",
  "CREATE_MV_TRIGGERS",
]

Outcome = Literal["applied", "failed", "skipped", "warning"]


@dataclass(frozen=True)
class SyncStep:
  op: StepOp
  sql: str
  safe: bool
  reason: str


@dataclass
class GrainPlan:
  grain: str
  steps: List[SyncStep] = field(default_factory=list)
  warnings: List[str] = field(default_factory=list)
  blocking_errors: List[str] = field(default_factory=list)

  def is_blocked(self) -> bool:
    return len(self.blocking_errors) > 0

  @property
  def statement_count(self) -> int:
    return len(self.steps)


@dataclass(frozen=True)
class SyncReportEntry:
  grain: str
  op: str
  outcome: Outcome
  sql: Optional[str] = None
  message: str = ""
