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
from typing import ClassVar, Dict, List, Optional

from graindb.errors import ModelError
from graindb.score.types import INTEGER, REVISION_COLUMN, SEMANTIC_TYPES


REFERENTIAL_ACTIONS = ("NO ACTION", "CASCADE", "SET NULL")


@dataclass
class Column:
  """
  A declared column. The semantic type is fixed at construction; physical
  type literals are chosen by the dialect.
  """
  name: str
  datatype: str
  nullable: bool = True
  default: object = None
  max_length: Optional[int] = None
  precision: Optional[int] = None
  scale: Optional[int] = None

  def __post_init__(self):
    if not self.name:
      raise ModelError("Column name must not be empty.")
    dt = (self.datatype or "").upper()
    if dt not in SEMANTIC_TYPES:
      raise ModelError(
        f"Column '{self.name}' has unknown type {self.datatype!r}. "
        f"Expected one of: {', '.join(SEMANTIC_TYPES)}."
      )
    self.datatype = dt


def revision_column() -> Column:
  return Column(REVISION_COLUMN, INTEGER, nullable=False, default=1)


@dataclass
class Index:
  name: str
  table: str
  columns: List[str]


@dataclass
class ForeignKey:
  """
  Reference from `columns` of the owning table to `ref_columns` of
  `ref_grain.ref_table`. `ref_columns` defaults to the target's primary key
  and is filled in when the score is finalized.
  """
  columns: List[str]
  ref_table: str
  ref_grain: Optional[str] = None
  ref_columns: List[str] = field(default_factory=list)
  on_delete: str = "NO ACTION"
  on_update: str = "NO ACTION"

  def __post_init__(self):
    self.on_delete = self.on_delete.upper()
    self.on_update = self.on_update.upper()
    for action in (self.on_delete, self.on_update):
      if action not in REFERENTIAL_ACTIONS:
        raise ModelError(f"Unknown referential action {action!r}.")


@dataclass
class TableElement:
  """
  Shared column/key bookkeeping of the two table variants. Variants are told
  apart by their KIND tag.
  """
  KIND: ClassVar[str] = ""

  grain_name: str
  name: str
  columns: Dict[str, Column] = field(default_factory=dict)
  primary_key: List[str] = field(default_factory=list)
  foreign_keys: List[ForeignKey] = field(default_factory=list)

  def add_column(self, column: Column) -> Column:
    if column.name == REVISION_COLUMN:
      raise ModelError(
        f"Column name '{REVISION_COLUMN}' is reserved ({self.grain_name}.{self.name})."
      )
    if column.name in self.columns:
      raise ModelError(
        f"Table '{self.grain_name}.{self.name}' already contains column '{column.name}'."
      )
    self.columns[column.name] = column
    return column

  def set_primary_key(self, *names: str) -> None:
    if len(set(names)) != len(names):
      raise ModelError(f"Duplicate column in primary key of '{self.grain_name}.{self.name}'.")
    self.primary_key = list(names)

  def add_foreign_key(
    self,
    columns: List[str],
    ref_table: str,
    *,
    ref_grain: Optional[str] = None,
    ref_columns: Optional[List[str]] = None,
    on_delete: str = "NO ACTION",
    on_update: str = "NO ACTION",
  ) -> ForeignKey:
    fk = ForeignKey(
      columns=list(columns),
      ref_table=ref_table,
      ref_grain=ref_grain,
      ref_columns=list(ref_columns or []),
      on_delete=on_delete,
      on_update=on_update,
    )
    self.foreign_keys.append(fk)
    return fk

  @property
  def has_primary_key(self) -> bool:
    return bool(self.primary_key)

  @property
  def is_versioned(self) -> bool:
    return False

  @property
  def is_read_only(self) -> bool:
    return False

  @property
  def physical_columns(self) -> List[Column]:
    """Columns as they exist in the database, in declaration order."""
    return list(self.columns.values())

  def get_column(self, name: str) -> Column:
    for c in self.physical_columns:
      if c.name == name:
        return c
    raise ModelError(f"Column '{name}' not found in '{self.grain_name}.{self.name}'.")


@dataclass
class Table(TableElement):
  """
  Writable table. Carries the hidden revision column; when `versioned`, a
  database trigger enforces optimistic locking on it.
  """
  KIND: ClassVar[str] = "table"

  versioned: bool = True

  @property
  def is_versioned(self) -> bool:
    return self.versioned

  @property
  def physical_columns(self) -> List[Column]:
    return list(self.columns.values()) + [revision_column()]


@dataclass
class ReadOnlyTable(TableElement):
  """Table that is only ever read through graindb; no revision column."""
  KIND: ClassVar[str] = "read_only_table"

  @property
  def is_read_only(self) -> bool:
    return True
