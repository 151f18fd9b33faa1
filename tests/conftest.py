"""Shared test fixtures for chatter_quote tests."""

import random
from datetime import datetime, timedelta

import pytest

from chatter_quote import db
from chatter_quote.config import (
    BootstrapConfig,
    Config,
    DeliveryConfig,
    EngineConfig,
    TrackingConfig,
)
from chatter_quote.errors import JobSchedulingFailure
from chatter_quote.jobs import CronTrigger, DateTrigger, IntervalTrigger, Job


@pytest.fixture
def db_path(tmp_path):
    """Initialize a real SQLite database using schema.sql and return its path."""
    path = tmp_path / "test.db"
    db.init_db(path)
    return path


@pytest.fixture
def db_conn(db_path):
    """Yield a database connection with row factory set."""
    with db.get_db(db_path) as conn:
        yield conn


@pytest.fixture
def make_config(tmp_path):
    """Factory fixture that creates Config instances with tmp paths."""
    def _make_config(**overrides):
        tracking_dir = tmp_path / "tracking"
        defaults = {
            "db_path": tmp_path / "test.db",
            "lock_path": tmp_path / "daemon.lock",
            "tracking": TrackingConfig(dir=tracking_dir),
            "delivery": DeliveryConfig(sent_log=str(tmp_path / "quotes.log")),
            "engine": EngineConfig(),
            "bootstrap": BootstrapConfig(quotes_file=""),
        }
        defaults.update(overrides)
        return Config(**defaults)
    return _make_config


class RecordingSink:
    """Delivery sink that remembers what it was asked to send."""

    def __init__(self, fail_with=None):
        self.sent = []
        self.fail_with = fail_with

    def send(self, text, reference_id=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((text, reference_id))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_sink():
    return RecordingSink


class FakeJobScheduler:
    """
    In-memory stand-in for JobScheduler.

    Keeps the same job bookkeeping but never runs anything on its own;
    tests fire jobs explicitly with fire().
    """

    def __init__(self, now=None):
        self._now = now or datetime(2024, 1, 1, 12, 0, 0)
        self.jobs = {}
        self.started = False
        self.shut_down = False
        self.fail_create_for = set()

    def now(self):
        return self._now

    def advance(self, seconds):
        self._now += timedelta(seconds=seconds)

    def _add(self, job, first_run):
        if job.key in self.jobs:
            raise JobSchedulingFailure(f"Job {job.group}/{job.name} already exists")
        job.next_run_at = first_run
        self.jobs[job.key] = job
        return job

    def create_recurring(self, group, name, cron, func, data=None):
        if name in self.fail_create_for:
            raise JobSchedulingFailure(f"Refusing to create {group}/{name}")
        trigger = CronTrigger(cron)
        job = Job(group=group, name=name, trigger=trigger, func=func, data=dict(data or {}))
        return self._add(job, trigger.next_fire_time(self._now))

    def schedule_interval(self, group, name, seconds, func, data=None, start_now=True):
        trigger = IntervalTrigger(seconds)
        job = Job(group=group, name=name, trigger=trigger, func=func, data=dict(data or {}))
        return self._add(job, self._now if start_now else trigger.next_fire_time(self._now))

    def schedule_once(self, group, name, run_at, func, data=None):
        job = Job(group=group, name=name, trigger=DateTrigger(run_at), func=func, data=dict(data or {}))
        return self._add(job, run_at)

    def delete_job(self, group, name):
        return self.jobs.pop((group, name), None) is not None

    def get_job(self, group, name):
        return self.jobs.get((group, name))

    def list_jobs_in_group(self, group):
        return [j for (g, _), j in self.jobs.items() if g == group]

    def fire(self, group, name):
        job = self.jobs[(group, name)]
        if not job.repeating:
            del self.jobs[job.key]
        job.func(job.data)

    def start(self):
        self.started = True

    def shutdown(self, wait=True):
        self.shut_down = True


@pytest.fixture
def fake_scheduler():
    return FakeJobScheduler()


@pytest.fixture
def rng():
    return random.Random(1234)
