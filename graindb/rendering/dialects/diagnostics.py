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

import argparse
from dataclasses import dataclass, asdict
import datetime as _dt
import json
from typing import Any, Dict, List, Optional

from graindb.rendering.dialects import get_active_dialect, get_available_dialect_names
from graindb.rendering.dialects.base import SqlDialect
from graindb.rendering.expr import AND, COL, EQ, L, PARAM, Param
from graindb.score.types import SEMANTIC_TYPES


@dataclass
class DialectDiagnostics:
  """Simple snapshot of a dialect's capabilities and behaviour."""

  name: str
  class_name: str
  capabilities: Dict[str, bool]

  # Literal rendering examples
  literal_true: str
  literal_false: str
  literal_null: str
  literal_sample_date: str
  literal_sample_bytes: str

  # Rendering samples
  sample_identifier: str
  sample_table: str
  sample_concat: str
  sample_where: str
  sample_param_ref: str

  # DDL samples
  type_map: Dict[str, str]
  sample_versioning_trigger: str

  def to_dict(self) -> Dict[str, Any]:
    """Return a JSON-serializable representation."""
    return asdict(self)


def collect_dialect_diagnostics(dialect: SqlDialect) -> DialectDiagnostics:
  """Collect a minimal set of diagnostics for a single dialect instance."""
  sample_where = AND(EQ(COL("id", "t"), Param(1)), EQ(COL("name", "t"), L("x")))

  if dialect.supports_parameterized_views:
    ref = PARAM("p")
    ref.position = 1
    sample_param_ref = dialect.render_expr(ref)
  else:
    sample_param_ref = ""

  return DialectDiagnostics(
    name=getattr(dialect, "DIALECT_NAME", dialect.__class__.__name__.lower()),
    class_name=dialect.__class__.__name__,
    capabilities=dialect.capabilities(),
    literal_true=dialect.render_literal(True),
    literal_false=dialect.render_literal(False),
    literal_null=dialect.render_literal(None),
    literal_sample_date=dialect.render_literal(_dt.date(2025, 1, 2)),
    literal_sample_bytes=dialect.render_literal(b"\x01\xff"),
    sample_identifier=dialect.render_identifier("Order Line"),
    sample_table=dialect.table_name("sales", "orders"),
    sample_concat=dialect.concat_expression(["'a'", "'b'", "'c'"]),
    sample_where=dialect.render_expr(sample_where),
    sample_param_ref=sample_param_ref,
    type_map={t: dialect.map_type(t) for t in SEMANTIC_TYPES},
    sample_versioning_trigger=dialect.versioning_trigger_name("sales", "orders"),
  )


def snapshot_all_dialects() -> Dict[str, DialectDiagnostics]:
  """
  Build diagnostics for all registered dialects.

  The keys of the result dict are dialect names as returned by
  get_available_dialect_names().
  """
  result: Dict[str, DialectDiagnostics] = {}

  for name in get_available_dialect_names():
    dialect = get_active_dialect(name)
    result[name] = collect_dialect_diagnostics(dialect)

  return result


def main(argv: Optional[List[str]] = None) -> int:
  """Print the diagnostics of one or all registered dialects as JSON."""
  parser = argparse.ArgumentParser(
    prog="graindb-dialects",
    description="Show how each SQL dialect renders literals, expressions and types.",
  )
  parser.add_argument(
    "dialect", nargs="?", choices=get_available_dialect_names(),
    help="Restrict the output to a single dialect.",
  )
  args = parser.parse_args(argv)

  if args.dialect:
    snapshot = {args.dialect: collect_dialect_diagnostics(get_active_dialect(args.dialect))}
  else:
    snapshot = snapshot_all_dialects()

  print(json.dumps({name: diag.to_dict() for name, diag in snapshot.items()}, indent=2))
  return 0


if __name__ == "__main__":
  raise SystemExit(main())
