"""DuckDBStore poll job configuration methods."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from synchub.models import PollJobState
from synchub.repositories.base import dumps, loads

logger = logging.getLogger(__name__)


class JobsMixin:

    async def load_job_states(self) -> Dict[str, PollJobState]:
        """Persisted state for every job that has ever been configured."""
        def _op(conn):
            return conn.execute("""
                SELECT job_name, enabled, interval_minutes, last_run_at,
                       last_result, disabled_reason, error_count
                FROM poll_jobs
            """).fetchall()

        return {
            row[0]: PollJobState(
                job_name=row[0],
                enabled=bool(row[1]),
                interval_minutes=row[2],
                last_run_at=row[3],
                last_result=loads(row[4]),
                disabled_reason=row[5],
                error_count=row[6] or 0,
            )
            for row in await self._run(_op)
        }

    async def get_job_state(self, job_name: str) -> Optional[PollJobState]:
        states = await self.load_job_states()
        return states.get(job_name)

    async def save_job_state(self, state: PollJobState) -> None:
        """Upsert the persisted part of a job's state (never is_running)."""
        def _op(conn):
            conn.execute("""
                INSERT INTO poll_jobs
                    (job_name, enabled, interval_minutes, last_run_at,
                     last_result, disabled_reason, error_count)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (job_name) DO UPDATE SET
                    enabled = excluded.enabled,
                    interval_minutes = excluded.interval_minutes,
                    last_run_at = excluded.last_run_at,
                    last_result = excluded.last_result,
                    disabled_reason = excluded.disabled_reason,
                    error_count = excluded.error_count
            """, [
                state.job_name,
                state.enabled,
                state.interval_minutes,
                state.last_run_at,
                dumps(state.last_result),
                state.disabled_reason,
                state.error_count,
            ])

        await self._run(_op)
