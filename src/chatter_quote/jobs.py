"""In-process job scheduler for recurring (cron/interval) and one-shot jobs.

Jobs are keyed by (group, name). A single dispatcher thread wakes up every
tick, hands due jobs to a thread pool, and computes the next fire time of
repeating jobs from the current time, so missed ticks coalesce into one
firing. A job never runs concurrently with itself: if a previous firing is
still running, the new one is skipped.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable
from zoneinfo import ZoneInfo

from croniter import croniter

from .errors import JobSchedulingFailure

logger = logging.getLogger("chatter_quote.jobs")

JobFunc = Callable[[dict], Any]


def _cron_iter(expression: str, base: datetime) -> croniter:
    # Quartz-style expressions carry seconds first and use "?" for
    # "no specific value" in the day fields, which croniter spells "*".
    fields = expression.replace("?", "*").split()
    return croniter(" ".join(fields), base, second_at_beginning=len(fields) > 5)


def validate_cron(expression: str) -> None:
    """Raise JobSchedulingFailure if croniter can't evaluate the expression."""
    if not expression or not expression.strip():
        raise JobSchedulingFailure("Empty cron expression")
    try:
        _cron_iter(expression, datetime.now()).get_next(datetime)
    except (ValueError, KeyError) as e:
        raise JobSchedulingFailure(f"Invalid cron expression {expression!r}: {e}") from e


class CronTrigger:
    def __init__(self, expression: str):
        validate_cron(expression)
        self.expression = expression

    def next_fire_time(self, after: datetime) -> datetime | None:
        return _cron_iter(self.expression, after).get_next(datetime)

    def __repr__(self) -> str:
        return f"CronTrigger({self.expression!r})"


class IntervalTrigger:
    def __init__(self, seconds: float):
        if seconds <= 0:
            raise JobSchedulingFailure(f"Interval must be positive, got {seconds}")
        self.seconds = seconds

    def next_fire_time(self, after: datetime) -> datetime | None:
        return after + timedelta(seconds=self.seconds)

    def __repr__(self) -> str:
        return f"IntervalTrigger({self.seconds}s)"


class DateTrigger:
    """Fires exactly once at run_at."""

    def __init__(self, run_at: datetime):
        self.run_at = run_at

    def next_fire_time(self, after: datetime) -> datetime | None:
        return None

    def __repr__(self) -> str:
        return f"DateTrigger({self.run_at.isoformat()})"


@dataclass
class Job:
    group: str
    name: str
    trigger: CronTrigger | IntervalTrigger | DateTrigger
    func: JobFunc
    data: dict = field(default_factory=dict)
    next_run_at: datetime | None = None
    running: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.group, self.name)

    @property
    def repeating(self) -> bool:
        return not isinstance(self.trigger, DateTrigger)

    @property
    def cron(self) -> str | None:
        if isinstance(self.trigger, CronTrigger):
            return self.trigger.expression
        return None


class JobScheduler:
    """Thread-pool backed scheduler. Create with start() / stop with shutdown()."""

    def __init__(
        self,
        max_workers: int = 4,
        tick_interval: float = 1.0,
        timezone: str = "",
    ):
        self.max_workers = max_workers
        self.tick_interval = tick_interval
        self.tz: tzinfo | None = ZoneInfo(timezone) if timezone else None
        self._jobs: dict[tuple[str, str], Job] = {}
        self._lock = threading.RLock()
        self._wakeup = threading.Event()
        self._stop_event = threading.Event()
        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._shut_down = False

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    def _localize(self, when: datetime) -> datetime:
        """Give a naive datetime the scheduler's timezone so it compares with now()."""
        if when.tzinfo is not None:
            return when
        if self.tz is None:
            return when.astimezone()
        return when.replace(tzinfo=self.tz)

    def _add(self, job: Job, first_run: datetime | None) -> Job:
        with self._lock:
            if self._shut_down:
                raise JobSchedulingFailure(
                    f"Scheduler is shut down, cannot add job {job.group}/{job.name}"
                )
            if job.key in self._jobs:
                raise JobSchedulingFailure(f"Job {job.group}/{job.name} already exists")
            job.next_run_at = self._localize(first_run) if first_run is not None else None
            self._jobs[job.key] = job
        self._wakeup.set()
        logger.debug("Added job %s/%s (%r) next run %s", job.group, job.name, job.trigger, first_run)
        return job

    def create_recurring(
        self, group: str, name: str, cron: str, func: JobFunc, data: dict | None = None,
    ) -> Job:
        """Add a job that fires on every match of a cron expression."""
        trigger = CronTrigger(cron)
        job = Job(group=group, name=name, trigger=trigger, func=func, data=dict(data or {}))
        return self._add(job, trigger.next_fire_time(self.now()))

    def schedule_interval(
        self,
        group: str,
        name: str,
        seconds: float,
        func: JobFunc,
        data: dict | None = None,
        start_now: bool = True,
    ) -> Job:
        """Add a job that fires every `seconds`, immediately first if start_now."""
        trigger = IntervalTrigger(seconds)
        job = Job(group=group, name=name, trigger=trigger, func=func, data=dict(data or {}))
        now = self.now()
        return self._add(job, now if start_now else trigger.next_fire_time(now))

    def schedule_once(
        self, group: str, name: str, run_at: datetime, func: JobFunc, data: dict | None = None,
    ) -> Job:
        """Add a non-repeating job that fires once at run_at."""
        run_at = self._localize(run_at)
        job = Job(group=group, name=name, trigger=DateTrigger(run_at), func=func, data=dict(data or {}))
        return self._add(job, run_at)

    def delete_job(self, group: str, name: str) -> bool:
        """Remove a job so it never fires again. A firing already in progress finishes."""
        with self._lock:
            job = self._jobs.pop((group, name), None)
        if job is not None:
            logger.debug("Deleted job %s/%s", group, name)
        return job is not None

    def get_job(self, group: str, name: str) -> Job | None:
        with self._lock:
            return self._jobs.get((group, name))

    def list_jobs_in_group(self, group: str) -> list[Job]:
        with self._lock:
            return [j for (g, _), j in self._jobs.items() if g == group]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="quote-job",
            )
        return self._executor

    def _run_job(self, job: Job) -> None:
        try:
            job.func(job.data)
        except Exception:
            logger.exception("Job %s/%s raised an error", job.group, job.name)
        finally:
            with self._lock:
                job.running = False

    def run_pending(self, now: datetime | None = None) -> list[Future]:
        """Submit every job due at `now` to the worker pool. Returns their futures."""
        now = self._localize(now) if now is not None else self.now()
        to_run = []
        with self._lock:
            for job in list(self._jobs.values()):
                if job.next_run_at is None or job.next_run_at > now:
                    continue
                if job.repeating:
                    job.next_run_at = job.trigger.next_fire_time(now)
                else:
                    del self._jobs[job.key]
                    job.next_run_at = None
                if job.running:
                    logger.warning(
                        "Job %s/%s is still running, skipping this firing",
                        job.group, job.name,
                    )
                    continue
                job.running = True
                to_run.append(job)

        futures = []
        for job in to_run:
            try:
                futures.append(self._ensure_executor().submit(self._run_job, job))
            except RuntimeError as e:
                # Executor already shut down
                logger.error("Could not run job %s/%s: %s", job.group, job.name, e)
                with self._lock:
                    job.running = False
        return futures

    def _seconds_until_next_run(self) -> float:
        with self._lock:
            pending = [j.next_run_at for j in self._jobs.values() if j.next_run_at is not None]
        if not pending:
            return self.tick_interval
        delta = (min(pending) - self.now()).total_seconds()
        return max(0.0, min(self.tick_interval, delta))

    def _dispatch_loop(self) -> None:
        logger.debug("Job dispatcher started")
        while not self._stop_event.is_set():
            timeout = self.tick_interval
            try:
                self.run_pending()
                timeout = self._seconds_until_next_run()
            except Exception as e:
                logger.error("Job dispatch error: %s", e)
            self._wakeup.wait(timeout=timeout)
            self._wakeup.clear()
        logger.debug("Job dispatcher stopped")

    def start(self) -> None:
        if self._thread is not None:
            return
        if self._shut_down:
            raise JobSchedulingFailure("Scheduler cannot be restarted after shutdown")
        self._ensure_executor()
        self._thread = threading.Thread(
            target=self._dispatch_loop, daemon=True, name="job-dispatcher",
        )
        self._thread.start()

    def shutdown(self, wait: bool = True) -> None:
        """Stop dispatching; optionally wait for running jobs to finish."""
        with self._lock:
            self._shut_down = True
        self._stop_event.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=10)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
