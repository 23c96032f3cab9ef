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

import logging
from typing import Dict, List, Set

from graindb.rendering.dialects.ddl import DdlResult
from graindb.score.grain import Grain
from graindb.sync.plan import GrainPlan, StepOp, SyncStep
from graindb.sync.policy import SyncPolicy
from graindb.system.introspection import GrainMetadata, read_grain_metadata


logger = logging.getLogger(__name__)


class _PlanBuilder:
  """Collects DdlResults into phases; unsupported results become blocking errors."""

  PHASES = (
    "drop_views",
    "drop_mv",
    "drop_constraints",
    "schema",
    "tables",
    "indices",
    "foreign_keys",
    "versioning",
    "views",
    "functions",
    "materialized_views",
    "mv_triggers",
  )

  def __init__(self, plan: GrainPlan):
    self.plan = plan
    self.phases: Dict[str, List[SyncStep]] = {p: [] for p in self.PHASES}

  def add(self, phase: str, op: StepOp, result: DdlResult, reason: str, safe: bool = True) -> bool:
    """Returns True when the result carried statements."""
    if result.is_unsupported:
      self.plan.blocking_errors.append(f"{op}: {reason}: {result.reason}")
      return False
    for sql in result.statements:
      self.phases[phase].append(SyncStep(op=op, sql=sql, safe=safe, reason=reason))
    return not result.is_noop

  def finish(self) -> GrainPlan:
    for phase in self.PHASES:
      self.plan.steps.extend(self.phases[phase])
    return self.plan


def _fk_signature(dialect, fk):
  return (
    tuple(fk.columns),
    dialect.physical_name(fk.ref_grain, fk.ref_table),
    tuple(fk.ref_columns),
  )


def build_grain_plan(conn, grain: Grain, dialect, ddl, policy: SyncPolicy) -> GrainPlan:
  """
  Compare a grain with the live database and compute the ordered DDL that
  makes the database match it. Reads the catalog; executes nothing.

  Phase order: drops of changed derived objects (views, functions,
  materialized-view triggers and tables, indices, foreign keys) -> schema ->
  tables -> indices -> foreign keys -> versioning triggers -> views ->
  functions -> materialized views -> materialized-view triggers.
  """
  meta: GrainMetadata = read_grain_metadata(conn, dialect, grain.name)
  plan = GrainPlan(grain=grain.name)
  b = _PlanBuilder(plan)
  g = grain.name
  debug_plan = bool(getattr(policy, "debug_plan", False))

  if debug_plan:
    plan.warnings.append(
      f"Introspection: grain {g} -> schema_exists={meta.schema_exists}, "
      f"tables={len(meta.tables)}, views={len(meta.views)}, functions={len(meta.functions)}"
    )

  # ------------------------------------------------------------
  # Schema
  # ------------------------------------------------------------
  if not meta.schema_exists:
    b.add("schema", "CREATE_SCHEMA", ddl.create_schema(g), f"Create schema for grain {g}")

  # ------------------------------------------------------------
  # Tables: create or converge columns and primary key
  # ------------------------------------------------------------
  new_tables: Set[str] = set()
  changed_tables: Set[str] = set()
  pk_changed: Set[str] = set()

  for table in grain.tables:
    live = meta.tables.get(table.name)
    if live is None:
      b.add("tables", "CREATE_TABLE", ddl.create_table(table), f"Create table {g}.{table.name}")
      new_tables.add(table.name)
      changed_tables.add(table.name)
      continue

    changed = False
    declared = {c.name: c for c in table.physical_columns}
    for col in declared.values():
      actual = live.columns.get(col.name)
      if actual is None:
        changed |= b.add(
          "tables", "ADD_COLUMN", ddl.add_column(table, col),
          f"Add column {g}.{table.name}.{col.name}",
        )
      else:
        changed |= b.add(
          "tables", "UPDATE_COLUMN", ddl.update_column(table, col, actual),
          f"Update column {g}.{table.name}.{col.name}",
        )

    for name, actual in live.columns.items():
      if name in declared:
        continue
      if policy.allow_drop_columns:
        changed |= b.add(
          "tables", "DROP_COLUMN", ddl.drop_column(table, actual),
          f"Drop column {g}.{table.name}.{name} (not in grain)", safe=False,
        )
      else:
        plan.warnings.append(
          f"Column {g}.{table.name}.{name} exists in the database but not in the grain; "
          f"left in place (dropping columns is disabled)."
        )

    if b.add(
      "tables", "UPDATE_PRIMARY_KEY", ddl.update_primary_key(table, live.pk),
      f"Update primary key of {g}.{table.name}",
    ):
      changed = True
      pk_changed.add(table.name)

    if changed:
      changed_tables.add(table.name)

  declared_tables = {t.name for t in grain.tables}
  mv_names = {mv.name for mv in grain.materialized_views}
  for name in sorted(meta.tables):
    if name not in declared_tables and name not in mv_names:
      plan.warnings.append(
        f"Table {g}.{name} exists in the database but not in the grain; it is never dropped."
      )

  # ------------------------------------------------------------
  # Materialized views: rebuild when the stored shape differs
  # ------------------------------------------------------------
  rebuilt_mvs: Set[str] = set()
  for mv in grain.materialized_views:
    live = meta.tables.get(mv.name)
    src = mv.source_ref
    rebuild = live is None
    if live is not None:
      declared = {c.name: c for c in mv.physical_columns}
      rebuild = (
        set(declared) != set(live.columns)
        or any(ddl.column_differences(c, live.columns[n]) for n, c in declared.items())
        or list(live.pk.columns if live.pk else []) != mv.primary_key
      )
    source_changed = src.grain == g and src.table in changed_tables
    source_new = src.grain == g and src.table in new_tables

    trigger_names = ddl.materialized_view_trigger_names(mv)
    triggers_ok = not rebuild and not source_changed and all(
      dialect.trigger_exists(conn, src.grain, src.table, n) for n in trigger_names
    )
    if triggers_ok:
      continue

    # A freshly created source table carries no triggers yet.
    if not source_new and (live is not None or source_changed):
      b.add(
        "drop_mv", "DROP_MV_TRIGGERS", ddl.drop_materialized_view_triggers(mv),
        f"Drop maintenance triggers of materialized view {g}.{mv.name}",
      )
    if rebuild:
      if live is not None:
        b.add(
          "drop_mv", "DROP_MATERIALIZED_VIEW", ddl.drop_materialized_view(g, mv.name),
          f"Drop outdated materialized view {g}.{mv.name}",
        )
      b.add(
        "materialized_views", "CREATE_MATERIALIZED_VIEW", ddl.create_materialized_view(mv),
        f"Create and fill materialized view {g}.{mv.name}",
      )
      rebuilt_mvs.add(mv.name)
    b.add(
      "mv_triggers", "CREATE_MV_TRIGGERS", ddl.create_materialized_view_triggers(mv),
      f"Create maintenance triggers of materialized view {g}.{mv.name}",
    )

  # ------------------------------------------------------------
  # Views and parameterized views (recognised by fingerprint)
  # ------------------------------------------------------------
  touched = changed_tables | rebuilt_mvs

  def _depends_on_touched(view) -> bool:
    return any(ref.grain == g and ref.table in touched for ref in view.tables.values())

  for view in grain.views:
    live = meta.views.get(view.name)
    if live is not None and live.fingerprint == ddl.view_fingerprint(view) \
        and not _depends_on_touched(view):
      continue
    if live is not None:
      b.add(
        "drop_views", "DROP_VIEW", ddl.drop_view(g, view.name),
        f"Drop outdated view {g}.{view.name}",
      )
    b.add("views", "CREATE_VIEW", ddl.create_view(view), f"Create view {g}.{view.name}")

  for pv in grain.parameterized_views:
    live = meta.functions.get(pv.name)
    if live is not None and live.fingerprint == ddl.function_fingerprint(pv) \
        and not _depends_on_touched(pv):
      continue
    if live is not None:
      b.add(
        "drop_views", "DROP_FUNCTION", ddl.drop_parameterized_view(g, pv.name),
        f"Drop outdated function {g}.{pv.name}",
      )
    b.add(
      "functions", "CREATE_FUNCTION", ddl.create_parameterized_view(pv),
      f"Create function {g}.{pv.name}",
    )

  declared_views = {v.name for v in grain.views}
  for name in sorted(meta.views):
    if name not in declared_views:
      plan.warnings.append(
        f"View {g}.{name} exists in the database but not in the grain; it is never dropped."
      )
  declared_functions = {pv.name for pv in grain.parameterized_views}
  for name in sorted(meta.functions):
    if name not in declared_functions:
      plan.warnings.append(
        f"Function {g}.{name} exists in the database but not in the grain; it is never dropped."
      )

  # ------------------------------------------------------------
  # Indices: dropped before table changes, created after
  # ------------------------------------------------------------
  for table in grain.tables:
    live = meta.tables.get(table.name)
    live_indices = dict(live.indices) if live is not None else {}
    for index in grain.indices_of(table.name):
      physical = dialect.index_name(g, index.name)
      actual = live_indices.pop(physical, None)
      if actual is not None and actual.columns == list(index.columns):
        continue
      if actual is not None:
        b.add(
          "drop_constraints", "DROP_INDEX", ddl.drop_index(g, table.name, physical),
          f"Drop changed index {g}.{index.name}",
        )
      b.add(
        "indices", "CREATE_INDEX", ddl.create_index(g, index),
        f"Create index {g}.{index.name} on {table.name}",
      )
    for physical in sorted(live_indices):
      b.add(
        "drop_constraints", "DROP_INDEX", ddl.drop_index(g, table.name, physical),
        f"Drop index {physical} on {g}.{table.name} (not in grain)",
      )

  # ------------------------------------------------------------
  # Foreign keys (compared by signature, names are not significant)
  # ------------------------------------------------------------
  for table in grain.tables:
    live = meta.tables.get(table.name)
    if table.name in new_tables and dialect.inline_foreign_keys:
      continue
    live_fks = {fk.signature: fk for fk in (live.foreign_keys if live is not None else [])}
    for fk in table.foreign_keys:
      sig = _fk_signature(dialect, fk)
      actual = live_fks.pop(sig, None)
      target_pk_changed = fk.ref_grain == g and fk.ref_table in pk_changed
      if actual is not None and not target_pk_changed:
        continue
      if actual is not None:
        b.add(
          "drop_constraints", "DROP_FOREIGN_KEY", ddl.drop_foreign_key(table, actual),
          f"Drop foreign key {actual.name} on {g}.{table.name} (target key changed)",
        )
      b.add(
        "foreign_keys", "ADD_FOREIGN_KEY", ddl.add_foreign_key(table, fk),
        f"Add foreign key ({', '.join(fk.columns)}) on {g}.{table.name} -> {fk.ref_table}",
      )
    for actual in live_fks.values():
      b.add(
        "drop_constraints", "DROP_FOREIGN_KEY", ddl.drop_foreign_key(table, actual),
        f"Drop foreign key {actual.name} on {g}.{table.name} (not in grain)",
      )

  # ------------------------------------------------------------
  # Versioning triggers (checked live, every run)
  # ------------------------------------------------------------
  for table in grain.tables:
    result = ddl.update_versioning_trigger(conn, table)
    phase = "versioning" if table.is_versioned else "drop_constraints"
    b.add(
      phase, "UPDATE_VERSIONING_TRIGGER", result,
      f"{'Create' if table.is_versioned else 'Drop'} versioning trigger of {g}.{table.name}",
    )

  plan = b.finish()
  if debug_plan:
    logger.debug(
      "Plan for grain %s: %d step(s), %d warning(s), %d blocking error(s)",
      g, len(plan.steps), len(plan.warnings), len(plan.blocking_errors),
    )
  return plan


def order_grains(grains: List[Grain]) -> List[Grain]:
  """
  Order grains so that grains referenced by foreign keys or view sources
  come first. Declaration order is kept otherwise; cycles keep declaration
  order for the grains involved.
  """
  by_name = {gr.name: gr for gr in grains}
  ordered: List[Grain] = []
  state: Dict[str, int] = {}

  def deps(gr: Grain) -> List[str]:
    out: List[str] = []
    for table in gr.tables:
      out += [fk.ref_grain for fk in table.foreign_keys]
    for view in gr.views + gr.parameterized_views + gr.materialized_views:
      out += [ref.grain for ref in view.tables.values()]
    return [d for d in out if d and d != gr.name and d in by_name]

  def visit(gr: Grain) -> None:
    if state.get(gr.name):
      return
    state[gr.name] = 1
    for dep in deps(gr):
      if not state.get(dep):
        visit(by_name[dep])
    state[gr.name] = 2
    ordered.append(gr)

  for gr in grains:
    visit(gr)
  return ordered
