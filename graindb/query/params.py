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
from typing import Any, Dict, Mapping, Optional, Sequence

from graindb.errors import ArgumentContractError


@dataclass
class BindArgs:
  """Runtime values for one execution of a compiled statement."""
  values: Mapping[str, Any] = field(default_factory=dict)
  filters: Mapping[str, Any] = field(default_factory=dict)
  params: Mapping[str, Any] = field(default_factory=dict)
  revision: Optional[int] = None


@dataclass(frozen=True)
class Binder:
  """Writes one runtime value into one numbered parameter slot."""
  slot: int

  @property
  def key(self) -> str:
    return f"p{self.slot}"

  def value(self, args: BindArgs) -> Any:
    raise NotImplementedError


@dataclass(frozen=True)
class FieldValueBinder(Binder):
  """Value of a column: written values, primary key values or equality filters."""
  column: str = ""

  def value(self, args: BindArgs) -> Any:
    if self.column in args.values:
      return args.values[self.column]
    if self.column in args.filters:
      return args.filters[self.column]
    raise ArgumentContractError(f"No value supplied for column '{self.column}'.")


@dataclass(frozen=True)
class RangeBinder(Binder):
  """One bound (0 = low, 1 = high) of a range filter."""
  column: str = ""
  bound: int = 0

  def value(self, args: BindArgs) -> Any:
    try:
      rng = args.filters[self.column]
    except KeyError:
      raise ArgumentContractError(f"No range supplied for column '{self.column}'.") from None
    return rng.high if self.bound else rng.low


@dataclass(frozen=True)
class FilterParamBinder(Binder):
  """Named parameter of a complex filter condition."""
  name: str = ""

  def value(self, args: BindArgs) -> Any:
    try:
      return args.params[self.name]
    except KeyError:
      raise ArgumentContractError(f"No value supplied for filter parameter '{self.name}'.") from None


@dataclass(frozen=True)
class RevisionBinder(Binder):
  """Previously read row revision, checked by the versioning trigger."""

  def value(self, args: BindArgs) -> Any:
    if args.revision is None:
      raise ArgumentContractError("Updating a versioned table requires the previously read revision.")
    return args.revision


class ParameterSetter:
  """
  Ordered binders of a compiled statement. Slots are numbered 1..n without
  gaps; the count always equals the statement's parameter count.
  """

  def __init__(self, binders: Sequence[Binder], expected_count: Optional[int] = None):
    self.binders = tuple(sorted(binders, key=lambda b: b.slot))
    slots = [b.slot for b in self.binders]
    if slots != list(range(1, len(slots) + 1)):
      raise ArgumentContractError(f"Parameter slots must be numbered 1..n, got {slots}.")
    if expected_count is not None and expected_count != len(slots):
      raise ArgumentContractError(
        f"Statement has {expected_count} parameter(s) but {len(slots)} binder(s)."
      )

  @property
  def slot_count(self) -> int:
    return len(self.binders)

  def bind(
    self,
    values: Optional[Mapping[str, Any]] = None,
    *,
    filters: Optional[Mapping[str, Any]] = None,
    params: Optional[Mapping[str, Any]] = None,
    revision: Optional[int] = None,
  ) -> Dict[str, Any]:
    """Return the named bind parameters ({"p1": ..., "p2": ...})."""
    args = BindArgs(
      values=values or {},
      filters=filters or {},
      params=params or {},
      revision=revision,
    )
    return {b.key: b.value(args) for b in self.binders}
