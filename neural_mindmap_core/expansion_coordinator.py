# neural_mindmap_core/expansion_coordinator.py

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .collaborators import ExpansionJobSystem
from .custom_logger import logger
from .errors import MindMapTimeoutError, UpstreamError

# Job states reported by the external job system
COMPLETED = "completed"
PARTIALLY_COMPLETED = "partially_completed"
FAILED = "failed"
CANCELLED = "cancelled"
SUCCESS_STATES = (COMPLETED, PARTIALLY_COMPLETED)
FAILURE_STATES = (FAILED, CANCELLED)


@dataclass
class ExpansionResult:
    job_id: str
    status: str
    result: Any = None
    polls: int = 0
    elapsed: float = 0.0

    @property
    def partial(self) -> bool:
        return self.status == PARTIALLY_COMPLETED


@dataclass
class _JobRecord:
    user_id: str
    context: str
    options: Dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class GraphExpansionCoordinator:
    """Submits expansion jobs to the external job system and waits for them with a bound."""

    def __init__(self, job_system: ExpansionJobSystem, poll_interval: float = 1.0, default_timeout: float = 60.0):
        self.job_system = job_system
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout
        self._jobs: Dict[str, _JobRecord] = {}

    async def expand(self, user_id: str, context: str, options: Optional[Dict[str, Any]] = None) -> str:
        options = dict(options or {})
        try:
            job_id = await self.job_system.submit_expansion(user_id, context, options)
        except Exception as e:
            logger.error("GraphExpansionCoordinator", f"Failed to submit expansion for {user_id}/{context}: {str(e)}")
            raise UpstreamError(str(e), original=e) from e
        self._jobs[job_id] = _JobRecord(user_id, context, options)
        logger.info("GraphExpansionCoordinator", f"Submitted expansion job {job_id} for {user_id}/{context}", {"options": options})
        return job_id

    def _describe(self, job_id: str) -> str:
        record = self._jobs.get(job_id)
        if record is None:
            return f"Expansion job {job_id}"
        return f"Expansion job {job_id} for {record.user_id}/{record.context}"

    async def _cancel_quietly(self, job_id: str):
        cancel = getattr(self.job_system, "cancel_job", None)
        if cancel is None:
            return
        try:
            await cancel(job_id)
            logger.info("GraphExpansionCoordinator", f"Requested cancellation of expansion job {job_id}")
        except Exception as e:
            logger.warning("GraphExpansionCoordinator", f"Best-effort cancel of job {job_id} failed: {str(e)}")

    async def _poll_until_done(self, job_id: str) -> ExpansionResult:
        started = time.monotonic()
        polls = 0
        while True:
            try:
                state = await self.job_system.poll_job(job_id)
            except Exception as e:
                raise UpstreamError(f"{self._describe(job_id)} could not be polled: {str(e)}", original=e) from e
            polls += 1
            status = (state or {}).get("status")

            if status in SUCCESS_STATES:
                if status == PARTIALLY_COMPLETED:
                    logger.warning("GraphExpansionCoordinator", f"{self._describe(job_id)} only partially completed")
                return ExpansionResult(job_id=job_id, status=status, result=state.get("result"),
                                       polls=polls, elapsed=time.monotonic() - started)
            if status in FAILURE_STATES:
                error = state.get("error") or "Unknown error"
                raise UpstreamError(f"{self._describe(job_id)} {status}: {error}")

            logger.debug("GraphExpansionCoordinator", f"Job {job_id} status: {status}", {"poll": polls})
            await asyncio.sleep(self.poll_interval)

    async def await_completion(self, job_id: str, timeout: Optional[float] = None) -> ExpansionResult:
        """
        Wait for an expansion job to reach a terminal state.

        Raises:
            UpstreamError: the job failed or was cancelled by the job system.
            MindMapTimeoutError: the job did not finish within ``timeout`` seconds;
                a cancel request is sent to the job system.
            asyncio.CancelledError: the waiting task was cancelled; a cancel request
                is sent before propagating.
        """
        timeout = self.default_timeout if timeout is None else timeout
        try:
            result = await asyncio.wait_for(self._poll_until_done(job_id), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error("GraphExpansionCoordinator", f"{self._describe(job_id)} timed out after {timeout}s")
            await self._cancel_quietly(job_id)
            self._jobs.pop(job_id, None)
            raise MindMapTimeoutError(f"Expansion job {job_id} timed out after {timeout} seconds", timeout=timeout) from e
        except asyncio.CancelledError:
            logger.warning("GraphExpansionCoordinator", f"Wait for {self._describe(job_id)} cancelled")
            await asyncio.shield(self._cancel_quietly(job_id))
            self._jobs.pop(job_id, None)
            raise
        except UpstreamError:
            self._jobs.pop(job_id, None)
            raise
        self._jobs.pop(job_id, None)
        logger.info("GraphExpansionCoordinator", f"Expansion job {job_id} {result.status}", {"polls": result.polls, "elapsed": round(result.elapsed, 3)})
        return result

    def pending_jobs(self) -> Dict[str, Dict[str, Any]]:
        return {job_id: {"user_id": r.user_id, "context": r.context} for job_id, r in self._jobs.items()}
