"""
Tracks engine executions until they finish and drives the matching jobs in the
progress registry to a terminal state.

Each job gets its own asyncio task and cancellation token. A loop polls the
engine right away, then every `poll_interval` seconds, until the execution
finishes, tracking is lost (two consecutive poll failures), or the bounded
`max_duration` runs out.
"""

import asyncio
import logging
import math
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from intake.application.progress_registry import JobNotFound, ProgressRegistry
from intake.core.domain.errors import (
    ExecutionTimeoutError,
    IntakeError,
    RemoteError,
    TrackingError,
)
from intake.core.domain.upload_job import FailureCause, JobStatus, UploadJob
from intake.infrastructure.messaging import notification_relay as messages
from intake.infrastructure.messaging.notification_relay import NotificationRelay
from intake.infrastructure.workflow.engine_client import (
    EngineError,
    ExecutionStatus,
    WorkflowEngineClient,
)

logger = logging.getLogger(__name__)

UNTRACKED_MESSAGE = "Submitted; execution status unknown"


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


@dataclass(frozen=True)
class MonitorPolicy:
    poll_interval: float = 2.0
    typical_duration: float = 80.0
    # No upper bound exists on the engine side; this one is ours.
    max_duration: float = 600.0
    notify_step: float = 30.0
    animation_max_seconds: float = 10.0
    animation_step: float = 1.0
    progress_floor: int = 25
    progress_ceiling: int = 95
    max_consecutive_failures: int = 2

    @classmethod
    def from_env(cls) -> "MonitorPolicy":
        return cls(
            poll_interval=_env_float("MONITOR_POLL_INTERVAL_SECONDS", 2.0),
            typical_duration=_env_float("MONITOR_TYPICAL_DURATION_SECONDS", 80.0),
            max_duration=_env_float("MONITOR_MAX_DURATION_SECONDS", 600.0),
            notify_step=_env_float("MONITOR_NOTIFY_STEP_SECONDS", 30.0),
            animation_max_seconds=_env_float("MONITOR_ANIMATION_MAX_SECONDS", 10.0),
        )


def estimate_progress(elapsed: float, policy: MonitorPolicy) -> int:
    """Linear estimate between floor and ceiling; never claims completion."""
    span = policy.progress_ceiling - policy.progress_floor
    if policy.typical_duration <= 0:
        return policy.progress_ceiling
    raw = math.floor(policy.progress_floor + (max(0.0, elapsed) / policy.typical_duration) * span)
    return max(policy.progress_floor, min(policy.progress_ceiling, raw))


class ThresholdSchedule:
    """Fires once each time elapsed time crosses the next multiple of `step`."""

    def __init__(self, step: float) -> None:
        self.step = step
        self.next_threshold = step

    def due(self, elapsed: float) -> bool:
        if self.step <= 0 or elapsed < self.next_threshold:
            return False
        while self.next_threshold <= elapsed:
            self.next_threshold += self.step
        return True


class ExecutionMonitor:
    def __init__(
        self,
        registry: ProgressRegistry,
        client: WorkflowEngineClient,
        relay: NotificationRelay,
        policy: Optional[MonitorPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._registry = registry
        self._client = client
        self._relay = relay
        self.policy = policy or MonitorPolicy()
        self._clock = clock
        self._now = now
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, asyncio.Event] = {}
        self._executions: Dict[str, str] = {}

    # -- task management -------------------------------------------------

    def start(self, job_id: str, execution_id: str) -> Optional[asyncio.Task]:
        """Spawn the poll loop for a dispatched job; no-op for terminal jobs."""
        job = self._registry.get(job_id)
        if job is None or job.status.is_terminal:
            logger.debug("Not monitoring job %s (missing or terminal)", job_id)
            return None
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            if self._executions.get(job_id) == execution_id:
                return existing
            # The id was reused for a new execution; the old loop must not drive it.
            logger.info("Job %s now tracks execution %s; stopping the old loop", job_id, execution_id)
            self._tokens[job_id].set()

        token = asyncio.Event()
        task = asyncio.create_task(
            self.watch(job_id, execution_id, token), name=f"monitor-{job_id}"
        )
        self._tasks[job_id] = task
        self._tokens[job_id] = token
        self._executions[job_id] = execution_id
        task.add_done_callback(lambda t, jid=job_id: self._forget(jid, t))
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            self._tasks.pop(job_id, None)
            self._tokens.pop(job_id, None)
            self._executions.pop(job_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Monitor task for job %s crashed", job_id, exc_info=task.exception())

    def cancel(self, job_id: str) -> bool:
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.set()
        return True

    def active_jobs(self) -> List[str]:
        return [jid for jid, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        for token in self._tokens.values():
            token.set()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- poll loop -------------------------------------------------------

    async def watch(
        self, job_id: str, execution_id: str, token: Optional[asyncio.Event] = None
    ) -> Optional[UploadJob]:
        token = token or asyncio.Event()
        try:
            await self._poll_until_done(job_id, execution_id, token)
        except JobNotFound:
            logger.info("Job %s was removed while being monitored", job_id)
        except asyncio.CancelledError:
            logger.info("Monitoring of job %s cancelled", job_id)
            raise
        except Exception as exc:
            logger.exception("Monitoring of job %s failed unexpectedly", job_id)
            await self._fail(job_id, TrackingError(f"Failed to track progress: {exc}"))
        return self._registry.get(job_id)

    async def _poll_until_done(self, job_id: str, execution_id: str, token: asyncio.Event) -> None:
        policy = self.policy
        started = self._clock()
        schedule = ThresholdSchedule(policy.notify_step)
        failures = 0

        while not token.is_set():
            if self._clock() - started >= policy.max_duration:
                await self._fail(
                    job_id,
                    ExecutionTimeoutError(
                        f"Execution {execution_id} did not finish within {policy.max_duration:.0f}s"
                    ),
                )
                return

            try:
                execution = await self._client.get_execution(execution_id)
            except EngineError as exc:
                if token.is_set():
                    break
                failures += 1
                if failures >= policy.max_consecutive_failures:
                    logger.error(
                        "Lost track of execution %s after %d failed polls: %s",
                        execution_id,
                        failures,
                        exc,
                    )
                    await self._fail(
                        job_id,
                        TrackingError(
                            "Failed to track processing progress; "
                            "the execution may still be running"
                        ),
                    )
                    return
                logger.warning("Poll of execution %s failed, retrying: %s", execution_id, exc)
            else:
                if token.is_set():
                    break
                failures = 0
                if execution.finished:
                    await self._finish(job_id, execution, token)
                    return
                elapsed = self._remote_elapsed(execution, started)
                self._report_running(job_id, execution, elapsed)
                if schedule.due(elapsed):
                    job = self._registry.get(job_id)
                    if job is not None:
                        await self._relay.send(
                            job.notify_address, messages.progress_message(job.filename, int(elapsed))
                        )

            if await self._wait(token, policy.poll_interval):
                break

        logger.info("Stopped monitoring job %s", job_id)

    def _remote_elapsed(self, execution: ExecutionStatus, started: float) -> float:
        if execution.started_at is not None:
            started_at = execution.started_at
            if started_at.tzinfo is None:
                started_at = started_at.replace(tzinfo=timezone.utc)
            return max(0.0, (self._now() - started_at).total_seconds())
        return self._clock() - started

    def _report_running(self, job_id: str, execution: ExecutionStatus, elapsed: float) -> None:
        policy = self.policy
        if execution.progress is not None:
            progress = min(policy.progress_ceiling, max(0, execution.progress))
        else:
            progress = estimate_progress(elapsed, policy)
        remaining = max(0, math.ceil(policy.typical_duration - elapsed))
        self._registry.update(
            job_id,
            status=JobStatus.processing,
            progress=progress,
            estimated_remaining_seconds=remaining,
            message="Processing document...",
        )

    async def _finish(self, job_id: str, execution: ExecutionStatus, token: asyncio.Event) -> None:
        measured = execution.measured_seconds
        if measured is not None:
            await self._animate(job_id, min(measured, self.policy.animation_max_seconds), token)
            if token.is_set():
                return

        if execution.success:
            moved = self._registry.transition(
                job_id,
                JobStatus.completed,
                progress=100,
                estimated_remaining_seconds=0,
                message="Document processed.",
            )
            if moved:
                logger.info("Execution %s for job %s completed", execution.id, job_id)
                await self._notify(job_id, messages.completed_message)
        else:
            await self._fail(job_id, RemoteError(execution.error or "Execution failed"))

    async def _animate(self, job_id: str, duration: float, token: asyncio.Event) -> None:
        """Walk progress up to the ceiling over `duration` instead of jumping."""
        policy = self.policy
        job = self._registry.get(job_id)
        if job is None or job.status.is_terminal:
            return
        start = max(job.progress, policy.progress_floor)
        self._registry.update(job_id, status=JobStatus.processing, progress=start)
        steps = math.ceil(duration / policy.animation_step) if policy.animation_step > 0 else 0
        if steps <= 0 or start >= policy.progress_ceiling:
            return
        per_step = (policy.progress_ceiling - start) / steps
        for step in range(1, steps + 1):
            if await self._wait(token, policy.animation_step):
                return
            if step == steps:
                progress = policy.progress_ceiling
            else:
                progress = min(policy.progress_ceiling, math.floor(start + per_step * step))
            self._registry.update(
                job_id,
                progress=progress,
                estimated_remaining_seconds=math.ceil((steps - step) * policy.animation_step),
            )

    async def complete_untracked(self, job_id: str) -> bool:
        """Terminal state for jobs the engine accepted without an execution id."""
        moved = self._registry.transition(
            job_id,
            JobStatus.completed,
            progress=100,
            estimated_remaining_seconds=None,
            message=UNTRACKED_MESSAGE,
        )
        if moved:
            await self._notify(job_id, messages.untracked_message)
        return moved

    async def _fail(self, job_id: str, error: IntakeError) -> bool:
        cause = error.cause or FailureCause.tracking_lost
        moved = self._registry.transition(
            job_id,
            JobStatus.failed,
            progress=100,
            error=error.message,
            failure_cause=cause,
            estimated_remaining_seconds=None,
            message=f"Processing failed ({cause.value}).",
        )
        if moved:
            logger.warning("Job %s failed (%s): %s", job_id, cause.value, error.message)
            if cause == FailureCause.tracking_lost:
                await self._notify(job_id, messages.tracking_lost_message)
            else:
                await self._notify(
                    job_id, lambda filename: messages.failed_message(filename, error.message)
                )
        return moved

    async def _notify(self, job_id: str, build: Callable[[str], str]) -> None:
        job = self._registry.get(job_id)
        if job is None or not job.notify_address:
            return
        await self._relay.send(job.notify_address, build(job.filename))

    @staticmethod
    async def _wait(token: asyncio.Event, seconds: float) -> bool:
        """Sleep up to `seconds`; True when the token was set meanwhile."""
        try:
            await asyncio.wait_for(token.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True
