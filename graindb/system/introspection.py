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
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from graindb.errors import DialectError


logger = logging.getLogger(__name__)


@dataclass
class DbColumnInfo:
  name: str
  type: str
  nullable: bool
  default: Optional[str] = None


@dataclass
class DbPkInfo:
  name: Optional[str]
  columns: List[str]


@dataclass
class DbIndexInfo:
  table: str
  name: str
  columns: List[str]


@dataclass
class DbForeignKeyInfo:
  table: str
  name: Optional[str]
  columns: List[str]
  ref_table: str
  ref_columns: List[str]

  @property
  def signature(self) -> Tuple[Tuple[str, ...], str, Tuple[str, ...]]:
    return tuple(self.columns), self.ref_table, tuple(self.ref_columns)


@dataclass
class DbTableInfo:
  name: str
  physical_name: str
  columns: Dict[str, DbColumnInfo] = field(default_factory=dict)
  pk: Optional[DbPkInfo] = None
  indices: Dict[str, DbIndexInfo] = field(default_factory=dict)
  foreign_keys: List[DbForeignKeyInfo] = field(default_factory=list)


@dataclass
class DbViewInfo:
  name: str
  fingerprint: str


@dataclass
class GrainMetadata:
  """Everything the planner needs to know about one grain's live objects."""
  grain: str
  schema_exists: bool
  tables: Dict[str, DbTableInfo] = field(default_factory=dict)
  views: Dict[str, DbViewInfo] = field(default_factory=dict)
  functions: Dict[str, DbViewInfo] = field(default_factory=dict)


def _normalize_sa_columns(cols: list[dict], dialect=None) -> List[DbColumnInfo]:
  """
  Turn SQLAlchemy inspector columns into DbColumnInfo:
    - type is always a string (diffing relies on stable representations),
      spelled by the dialect when one is given
    - nullable is normalized to bool
    - default is the raw server default text
  """
  out = []
  for c in cols or []:
    default = c.get("default")
    out.append(
      DbColumnInfo(
        name=c["name"],
        type=(
          dialect.reflected_type_name(c.get("type")) if dialect else str(c.get("type") or "")
        ),
        nullable=bool(c.get("nullable", True)),
        default=str(default) if default is not None else None,
      )
    )
  return out


def _read_table(insp, dialect, schema: Optional[str], physical: str, logical: str) -> DbTableInfo:
  info = DbTableInfo(name=logical, physical_name=physical)

  for col in _normalize_sa_columns(insp.get_columns(physical, schema=schema), dialect):
    info.columns[col.name] = col

  pk = insp.get_pk_constraint(physical, schema=schema) or {}
  if pk.get("constrained_columns"):
    info.pk = DbPkInfo(name=pk.get("name"), columns=list(pk["constrained_columns"]))

  for ix in insp.get_indexes(physical, schema=schema) or []:
    # Backing indexes of unique/primary key constraints are not ours to manage.
    if ix.get("duplicates_constraint") or not ix.get("name"):
      continue
    cols = [c for c in (ix.get("column_names") or []) if c is not None]
    info.indices[ix["name"]] = DbIndexInfo(table=logical, name=ix["name"], columns=cols)

  for fk in insp.get_foreign_keys(physical, schema=schema) or []:
    info.foreign_keys.append(
      DbForeignKeyInfo(
        table=logical,
        name=fk.get("name"),
        columns=list(fk.get("constrained_columns") or []),
        ref_table=fk.get("referred_table"),
        ref_columns=list(fk.get("referred_columns") or []),
      )
    )
  return info


def read_grain_metadata(conn, dialect, grain_name: str) -> GrainMetadata:
  """
  Read the live state of a grain: tables (columns, primary key, indices,
  foreign keys), views and table-valued functions with their fingerprints.

  A fresh Inspector is used on every call so results always reflect the
  current catalog, including DDL executed earlier in the same transaction.
  """
  schema = dialect.grain_schema(grain_name)
  try:
    insp = inspect(conn)
    if schema is not None and schema not in insp.get_schema_names():
      logger.debug("Schema %s does not exist yet", schema)
      return GrainMetadata(grain=grain_name, schema_exists=False)

    meta = GrainMetadata(grain=grain_name, schema_exists=True)
    for physical in insp.get_table_names(schema=schema):
      logical = dialect.logical_name(grain_name, physical)
      if logical is None:
        continue
      meta.tables[logical] = _read_table(insp, dialect, schema, physical, logical)
  except SQLAlchemyError as exc:
    raise DialectError(f"Could not introspect grain '{grain_name}': {exc}") from exc

  for name, fp in dialect.read_view_fingerprints(conn, grain_name).items():
    meta.views[name] = DbViewInfo(name=name, fingerprint=fp)
  for name, fp in dialect.read_function_fingerprints(conn, grain_name).items():
    meta.functions[name] = DbViewInfo(name=name, fingerprint=fp)

  logger.debug(
    "Introspected grain %s: %d table(s), %d view(s), %d function(s)",
    grain_name, len(meta.tables), len(meta.views), len(meta.functions),
  )
  return meta
