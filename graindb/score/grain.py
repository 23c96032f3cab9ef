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
import hashlib
from typing import Dict, List, Optional, Union

from graindb.errors import ModelError
from graindb.score.model import Index, ReadOnlyTable, Table, TableElement
from graindb.score.views import MaterializedView, ParameterizedView, TableRef, View, ViewElement


GrainElement = Union[Table, ReadOnlyTable, View, MaterializedView, ParameterizedView]

TABLE_KINDS = (Table.KIND, ReadOnlyTable.KIND)


@dataclass
class Grain:
  """
  A named namespace of tables, views and indices. Constructed once when the
  score is loaded; treat as immutable after `Score.finalize()`.
  """
  name: str
  version: str = "1.0"
  elements: Dict[str, GrainElement] = field(default_factory=dict)
  indices: Dict[str, Index] = field(default_factory=dict)
  checksum: str = ""

  def __post_init__(self):
    if not self.name:
      raise ModelError("Grain name must not be empty.")
    # "__" separates grain and object name in prefixed physical names.
    if "__" in self.name:
      raise ModelError(f"Grain name '{self.name}' must not contain '__'.")

  def _add(self, element):
    if element.name in self.elements:
      raise ModelError(f"Grain '{self.name}' already contains an element named '{element.name}'.")
    self.elements[element.name] = element
    return element

  def add_table(self, name: str, *, versioned: bool = True) -> Table:
    return self._add(Table(grain_name=self.name, name=name, versioned=versioned))

  def add_read_only_table(self, name: str) -> ReadOnlyTable:
    return self._add(ReadOnlyTable(grain_name=self.name, name=name))

  def add_view(self, name: str, *, distinct: bool = False) -> View:
    return self._add(View(grain_name=self.name, name=name, distinct=distinct))

  def add_materialized_view(self, name: str) -> MaterializedView:
    return self._add(MaterializedView(grain_name=self.name, name=name))

  def add_parameterized_view(self, name: str) -> ParameterizedView:
    return self._add(ParameterizedView(grain_name=self.name, name=name))

  def add_index(self, name: str, table: str, columns: List[str]) -> Index:
    if name in self.indices:
      raise ModelError(f"Grain '{self.name}' already contains index '{name}'.")
    index = Index(name=name, table=table, columns=list(columns))
    self.indices[name] = index
    return index

  def _of_kind(self, *kinds: str) -> list:
    return [e for e in self.elements.values() if e.KIND in kinds]

  @property
  def tables(self) -> List[TableElement]:
    return self._of_kind(*TABLE_KINDS)

  @property
  def views(self) -> List[View]:
    return self._of_kind(View.KIND)

  @property
  def materialized_views(self) -> List[MaterializedView]:
    return self._of_kind(MaterializedView.KIND)

  @property
  def parameterized_views(self) -> List[ParameterizedView]:
    return self._of_kind(ParameterizedView.KIND)

  def get_element(self, name: str, kind: Optional[str] = None) -> GrainElement:
    element = self.elements.get(name)
    if element is None or (kind is not None and element.KIND != kind):
      what = kind or "element"
      raise ModelError(f"Grain '{self.name}' has no {what} named '{name}'.")
    return element

  def indices_of(self, table_name: str) -> List[Index]:
    return [i for i in self.indices.values() if i.table == table_name]

  def compute_checksum(self) -> str:
    """SHA-1 over a canonical description of everything declared in the grain."""
    h = hashlib.sha1()
    h.update(f"{self.name}|{self.version}".encode("utf-8"))
    for element in self.elements.values():
      h.update(f"|{element.KIND}:{element!r}".encode("utf-8"))
    for index in self.indices.values():
      h.update(f"|index:{index!r}".encode("utf-8"))
    return h.hexdigest()


class Score:
  """The complete declared set of grains for one deployment."""

  def __init__(self):
    self.grains: Dict[str, Grain] = {}
    self.finalized = False

  def add_grain(self, name: str, version: str = "1.0") -> Grain:
    if name in self.grains:
      raise ModelError(f"Score already contains grain '{name}'.")
    grain = Grain(name=name, version=version)
    self.grains[name] = grain
    return grain

  def get_grain(self, name: str) -> Grain:
    try:
      return self.grains[name]
    except KeyError:
      raise ModelError(f"Grain '{name}' does not exist in the score.") from None

  def finalize(self) -> "Score":
    """
    Validate the whole score and resolve cross references. Any violation
    raises ModelError before a database is touched.
    """
    for grain in self.grains.values():
      for table in grain.tables:
        self._finalize_table(grain, table)
      for index in grain.indices.values():
        self._finalize_index(grain, index)

    # Materialized views first: other views may select from them.
    for grain in self.grains.values():
      for mv in grain.materialized_views:
        mv.finalize(lambda ref, g=grain: self._resolve_table_ref(g, ref, TABLE_KINDS))
    view_sources = TABLE_KINDS + (MaterializedView.KIND,)
    for grain in self.grains.values():
      for view in grain.views + grain.parameterized_views:
        view.finalize(lambda ref, g=grain: self._resolve_table_ref(g, ref, view_sources))

    for grain in self.grains.values():
      grain.checksum = grain.compute_checksum()
    self.finalized = True
    return self

  # ---------------------------------------------------------------------------
  # Helpers
  # ---------------------------------------------------------------------------
  def _resolve_table_ref(self, grain: Grain, ref: TableRef, kinds) -> TableElement:
    target_grain = self.get_grain(ref.grain) if ref.grain else grain
    ref.grain = target_grain.name
    element = target_grain.elements.get(ref.table)
    if element is None or element.KIND not in kinds:
      raise ModelError(
        f"Table '{target_grain.name}.{ref.table}' referenced as '{ref.alias}' does not exist."
      )
    return element

  def _finalize_table(self, grain: Grain, table: TableElement) -> None:
    where = f"'{grain.name}.{table.name}'"
    if not table.columns:
      raise ModelError(f"Table {where} must contain at least one column.")
    if table.KIND == Table.KIND and not table.primary_key:
      raise ModelError(f"Table {where} must have a primary key.")
    for name in table.primary_key:
      col = table.columns.get(name)
      if col is None:
        raise ModelError(f"Primary key of {where} references unknown column '{name}'.")
      if col.nullable:
        raise ModelError(f"Primary key column '{name}' of {where} must be NOT NULL.")

    for fk in table.foreign_keys:
      for name in fk.columns:
        if name not in table.columns:
          raise ModelError(f"Foreign key of {where} references unknown column '{name}'.")
      target_grain = self.get_grain(fk.ref_grain) if fk.ref_grain else grain
      fk.ref_grain = target_grain.name
      target = target_grain.elements.get(fk.ref_table)
      if target is None or target.KIND not in TABLE_KINDS:
        raise ModelError(
          f"Foreign key of {where} references unknown table '{target_grain.name}.{fk.ref_table}'."
        )
      if not fk.ref_columns:
        if not target.primary_key:
          raise ModelError(
            f"Foreign key of {where}: target '{target_grain.name}.{target.name}' has no primary key."
          )
        fk.ref_columns = list(target.primary_key)
      for name in fk.ref_columns:
        if name not in target.columns:
          raise ModelError(
            f"Foreign key of {where} references unknown field '{target.name}.{name}'."
          )
      if len(fk.ref_columns) != len(fk.columns):
        raise ModelError(
          f"Foreign key of {where}: {len(fk.columns)} column(s) cannot reference "
          f"{len(fk.ref_columns)} column(s) of '{target.name}'."
        )
      if fk.on_delete == "SET NULL" and not all(table.columns[c].nullable for c in fk.columns):
        raise ModelError(f"Foreign key of {where}: SET NULL requires nullable columns.")

  def _finalize_index(self, grain: Grain, index: Index) -> None:
    table = grain.elements.get(index.table)
    if table is None or table.KIND not in TABLE_KINDS:
      raise ModelError(
        f"Index '{grain.name}.{index.name}' references unknown table '{index.table}'."
      )
    if not index.columns:
      raise ModelError(f"Index '{grain.name}.{index.name}' has no columns.")
    if len(set(index.columns)) != len(index.columns):
      raise ModelError(f"Index '{grain.name}.{index.name}' contains duplicate columns.")
    for name in index.columns:
      if name not in table.columns:
        raise ModelError(
          f"Index '{grain.name}.{index.name}' references unknown column '{table.name}.{name}'."
        )
