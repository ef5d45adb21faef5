"""
Job state tracking.

``JobTracker`` turns repeated observations of a job into a stream of
state-change notifications. One asyncio task drives each tracked job;
every subscriber of that job shares it.

Per job the loop is strictly sequential: observe, evaluate, notify, then
schedule the next observation. Only consecutive identical states are
suppressed, so every distinct transition reaches subscribers in the order it
was observed.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from autocloud.jobs.models import TERMINAL_STATES, JobSnapshot
from autocloud.jobs.sources import SnapshotSource
from autocloud.utils.errors import ServerError
from autocloud.utils.logging import ContextKeys, LoggerFactory, bind_job_context

if TYPE_CHECKING:
    from autocloud.config import ClientConfig

logger = LoggerFactory.get_logger("jobs.tracker")

ChangeCallback = Callable[[JobSnapshot, Optional[JobSnapshot]], Any]
ErrorCallback = Callable[[BaseException], Any]
CloseCallback = Callable[[], Any]
SleepFunc = Callable[[float], Awaitable[Any]]


class TrackerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    BACKING_OFF = "backing_off"
    CLOSED = "closed"


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``JobTracker.subscribe``."""

    job_id: str
    on_change: ChangeCallback
    on_error: Optional[ErrorCallback] = None
    on_close: Optional[CloseCallback] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    _tracker: Optional["JobTracker"] = field(default=None, repr=False)
    _session: Optional["TrackerSession"] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.subscriptions.get(self.id) is self

    def cancel(self) -> None:
        """Stop receiving notifications; same as ``tracker.unsubscribe(self)``."""
        if self._tracker is not None:
            self._tracker.unsubscribe(self)


@dataclass(eq=False)
class TrackerSession:
    """Runtime state of one tracked job."""

    job_id: str
    known_state: Optional[str] = None
    # Snapshot last delivered to subscribers, or the silent baseline.
    last_emitted: Optional[JobSnapshot] = None
    last_observed: Optional[JobSnapshot] = None
    backoff_count: int = 0
    running: bool = True
    observations: int = 0
    subscriptions: Dict[str, Subscription] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None
    closed: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def state(self) -> TrackerState:
        if not self.running:
            return TrackerState.CLOSED
        if self.backoff_count > 0:
            return TrackerState.BACKING_OFF
        return TrackerState.POLLING


class JobTracker:
    """Subscribe to job state transitions until a terminal state or cancellation.

    Failures from the source are classified: ``ServerError`` is reported to
    subscribers and retried after ``interval * (1 + backoff_count)``; any
    other failure is reported and closes the session.
    """

    def __init__(
        self,
        source: SnapshotSource,
        *,
        poll_interval: float = 1.0,
        emit_initial: bool = True,
        terminal_states: Iterable[str] = TERMINAL_STATES,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._source = source
        self._interval = poll_interval
        self._emit_initial = emit_initial
        self._terminal_states: FrozenSet[str] = frozenset(terminal_states)
        self._sleep = sleep
        self._sessions: Dict[str, TrackerSession] = {}

    @classmethod
    def from_config(cls, source: SnapshotSource, config: "ClientConfig", **kwargs: Any) -> "JobTracker":
        return cls(
            source,
            poll_interval=config.poll_interval,
            emit_initial=config.emit_initial,
            terminal_states=config.terminal_states,
            **kwargs,
        )

    @property
    def poll_interval(self) -> float:
        return self._interval

    @property
    def tracked_jobs(self) -> List[str]:
        return list(self._sessions)

    def is_tracking(self, job_id: str) -> bool:
        return job_id in self._sessions

    def state_of(self, job_id: str) -> TrackerState:
        session = self._sessions.get(job_id)
        return session.state if session else TrackerState.IDLE

    def backoff_count(self, job_id: str) -> int:
        session = self._sessions.get(job_id)
        return session.backoff_count if session else 0

    def last_snapshot(self, job_id: str) -> Optional[JobSnapshot]:
        session = self._sessions.get(job_id)
        return session.last_observed if session else None

    def subscribe(
        self,
        job_id: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
        on_close: Optional[CloseCallback] = None,
        *,
        known_state: Optional[str] = None,
    ) -> Subscription:
        """Register callbacks for ``job_id`` and start tracking it if needed.

        ``known_state`` only matters for the subscription that opens the
        session: when the first observed state equals it, that observation
        becomes a silent baseline.
        """
        if not isinstance(job_id, str) or not job_id:
            raise TypeError('"jobId" must be a string.')
        if not callable(on_change):
            raise TypeError("on_change must be callable")

        session = self._sessions.get(job_id)
        if session is None:
            session = TrackerSession(job_id=job_id, known_state=known_state)
            self._sessions[job_id] = session
            session.task = asyncio.get_running_loop().create_task(
                self._run(session), name=f"autocloud-track-{job_id}"
            )

        subscription = Subscription(
            job_id=job_id,
            on_change=on_change,
            on_error=on_error,
            on_close=on_close,
            _tracker=self,
            _session=session,
        )
        session.subscriptions[subscription.id] = subscription
        logger.debug(
            "Subscribed to job",
            extra_context={
                ContextKeys.JOB_ID: job_id,
                ContextKeys.SUBSCRIPTION_ID: subscription.id,
                "subscribers": len(session.subscriptions),
            },
        )
        return subscription

    def unsubscribe(self, handle: Subscription) -> None:
        """Remove a subscription. Removing an inactive handle is a no-op."""
        session = handle._session
        if session is None or session.subscriptions.get(handle.id) is not handle:
            return
        del session.subscriptions[handle.id]
        logger.debug(
            "Unsubscribed from job",
            extra_context={ContextKeys.JOB_ID: handle.job_id, ContextKeys.SUBSCRIPTION_ID: handle.id},
        )
        if not session.subscriptions and session.running:
            self._cancel(session)

    async def wait_closed(self, job_id: str) -> None:
        """Wait until the current session for ``job_id`` has ended."""
        session = self._sessions.get(job_id)
        if session is not None:
            await session.closed.wait()

    async def close(self) -> None:
        """Cancel every session without sending close signals."""
        sessions = list(self._sessions.values())
        tasks = []
        for session in sessions:
            self._cancel(session)
            if session.task is not None:
                tasks.append(session.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _cancel(self, session: TrackerSession) -> None:
        session.running = False
        self._discard(session)
        session.closed.set()
        task = session.task
        # A callback running on the loop task itself must not cancel it; the
        # loop sees running=False once the delivery pass is over.
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        logger.info("Job tracking cancelled", extra_context={ContextKeys.JOB_ID: session.job_id})

    def _discard(self, session: TrackerSession) -> None:
        if self._sessions.get(session.job_id) is session:
            del self._sessions[session.job_id]

    async def _run(self, session: TrackerSession) -> None:
        job_id = session.job_id
        bind_job_context(job_id)
        logger.info("Job tracking started", extra_context={"paced": self._source.paced})
        delay = 0.0
        try:
            while session.running:
                if delay > 0:
                    await self._sleep(delay)
                    if not session.running:
                        break

                try:
                    snapshot = await self._source.next_snapshot(job_id)
                except ServerError as exc:
                    if not session.running:
                        break
                    session.backoff_count += 1
                    delay = self._interval + session.backoff_count * self._interval
                    logger.warning(
                        "Error contacting API; retrying",
                        extra_context={
                            ContextKeys.DELAY_S: round(delay, 3),
                            "backoff_count": session.backoff_count,
                            ContextKeys.HTTP_STATUS: exc.status,
                        },
                        exception=exc,
                    )
                    await self._dispatch_error(session, exc)
                    continue
                except Exception as exc:
                    if not session.running:
                        break
                    logger.error("Job tracking failed", exception=exc)
                    await self._dispatch_error(session, exc)
                    if session.running:
                        await self._finish(session)
                    break

                # Results that arrive after the last unsubscribe are dropped.
                if not session.running:
                    break

                if await self._apply_snapshot(session, snapshot):
                    break
                delay = self._interval if self._source.paced else 0.0
        finally:
            session.running = False
            self._discard(session)
            session.closed.set()
            # A fresh session may already own the job's source resources.
            if job_id not in self._sessions:
                await self._source.release(job_id)
            logger.debug("Job tracking loop exited", extra_context={"observations": session.observations})

    async def _apply_snapshot(self, session: TrackerSession, snapshot: JobSnapshot) -> bool:
        """Handle one successful observation; returns True when the loop must stop."""
        previous = session.last_emitted
        first = session.observations == 0
        session.observations += 1
        session.backoff_count = 0
        session.last_observed = snapshot

        terminal = snapshot.state in self._terminal_states
        notify = first or snapshot.state != previous.state
        if first and not terminal:
            if not self._emit_initial:
                notify = False
            elif session.known_state is not None:
                notify = snapshot.state != session.known_state
        # Repeats of the delivered state never replace it.
        if notify or first:
            session.last_emitted = snapshot

        if notify:
            logger.info(
                "Job state changed",
                extra_context={
                    "state": snapshot.state,
                    "previous_state": previous.state if previous else None,
                    "terminal": terminal,
                },
            )
            await self._dispatch(session, "on_change", snapshot, None if first else previous)
            if not session.running:
                return True

        if terminal:
            await self._finish(session)
            return True
        return False

    async def _finish(self, session: TrackerSession) -> None:
        """Close the session and send the final close signal."""
        session.running = False
        self._discard(session)
        logger.info("Job tracking closed", extra_context={"state": getattr(session.last_observed, "state", None)})
        await self._dispatch(session, "on_close")

    async def _dispatch_error(self, session: TrackerSession, error: BaseException) -> None:
        if not any(sub.on_error for sub in session.subscriptions.values()):
            logger.warning(
                "No subscriber handles job tracking errors",
                extra_context={ContextKeys.ERROR_TYPE: type(error).__name__},
            )
        await self._dispatch(session, "on_error", error)

    async def _dispatch(self, session: TrackerSession, kind: str, *args: Any) -> None:
        # Iterate over a copy; unsubscribing mid-pass takes effect afterwards.
        for subscription in list(session.subscriptions.values()):
            callback = getattr(subscription, kind)
            if callback is None:
                continue
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "Subscriber callback raised",
                    extra_context={ContextKeys.SUBSCRIPTION_ID: subscription.id, "callback": kind},
                    exception=exc,
                )
