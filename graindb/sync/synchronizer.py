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
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from graindb.errors import ConvergenceError, UnsupportedOperationError
from graindb.score.grain import Grain, Score
from graindb.sync.plan import SyncReportEntry
from graindb.sync.planner import build_grain_plan, order_grains
from graindb.sync.policy import SyncPolicy, load_sync_policy


logger = logging.getLogger(__name__)


class SchemaSynchronizer:
  """
  Brings a database in line with a score, one grain at a time.

  Every grain is applied in its own transaction (a savepoint when the
  caller already holds one). A failing grain is rolled back and stops the
  run; grains applied before it stay committed. Running twice against an
  unchanged score executes nothing the second time.
  """

  def __init__(
    self,
    dialect,
    policy: Optional[SyncPolicy] = None,
    report_sink: Optional[Callable[[SyncReportEntry], None]] = None,
  ):
    self.dialect = dialect
    self.ddl = dialect.ddl_generator()
    self.policy = policy or load_sync_policy()
    self.report_sink = report_sink
    self.report: List[SyncReportEntry] = []

  def _emit(self, entry: SyncReportEntry) -> None:
    self.report.append(entry)
    if self.report_sink is not None:
      self.report_sink(entry)

  def synchronize(self, score: Score, conn) -> int:
    """Returns the number of DDL statements executed."""
    if not score.finalized:
      score.finalize()

    self.dialect.check_connection(conn)
    self.report = []
    total = 0
    for grain in order_grains(list(score.grains.values())):
      total += self._synchronize_grain(grain, conn)
    logger.info("Schema synchronization finished: %d statement(s) executed", total)
    return total

  def _synchronize_grain(self, grain: Grain, conn) -> int:
    tx = conn.begin_nested() if conn.in_transaction() else conn.begin()
    step = None
    executed = 0
    try:
      plan = build_grain_plan(conn, grain, self.dialect, self.ddl, self.policy)

      for warning in plan.warnings:
        logger.warning("Grain %s: %s", grain.name, warning)
        self._emit(SyncReportEntry(grain=grain.name, op="WARN", outcome="warning", message=warning))

      if plan.is_blocked():
        for error in plan.blocking_errors:
          self._emit(SyncReportEntry(grain=grain.name, op="BLOCK", outcome="skipped", message=error))
        raise UnsupportedOperationError(
          f"Grain '{grain.name}' cannot be synchronized on {self.dialect.DIALECT_NAME}: "
          + "; ".join(plan.blocking_errors),
          grain=grain.name,
          op=plan.blocking_errors[0].split(":", 1)[0],
        )

      for step in plan.steps:
        logger.debug("Grain %s: %s: %s", grain.name, step.op, step.sql)
        conn.exec_driver_sql(step.sql)
        executed += 1
        self._emit(
          SyncReportEntry(
            grain=grain.name, op=step.op, outcome="applied", sql=step.sql, message=step.reason
          )
        )

    except SQLAlchemyError as exc:
      tx.rollback()
      op = step.op if step is not None else None
      sql = step.sql if step is not None else None
      self._emit(
        SyncReportEntry(grain=grain.name, op=op or "PLAN", outcome="failed", sql=sql, message=str(exc))
      )
      logger.exception("Grain %s failed at %s; rolled back", grain.name, op or "planning")
      raise ConvergenceError(
        f"Grain '{grain.name}' failed at {op or 'planning'}: {exc}",
        grain=grain.name,
        op=op,
        sql=sql,
      ) from exc

    except Exception:
      tx.rollback()
      raise

    tx.commit()
    logger.info(
      "Synchronized grain %s: %d statement(s), checksum %s",
      grain.name, executed, grain.checksum,
    )
    return executed
