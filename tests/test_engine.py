"""Tests for chatter_quote.engine."""

import random
from datetime import timedelta

import pytest

from chatter_quote import db
from chatter_quote.config import MARK_USED_ON_DELIVERY, EngineConfig
from chatter_quote.db import Quote, Schedule
from chatter_quote.delivery import SentQuoteLog
from chatter_quote.engine import (
    ENGINE_GROUP,
    QUOTE_GROUP,
    SCHEDULE_GROUP,
    SYNC_JOB_NAME,
    QuoteEngine,
)
from chatter_quote.errors import DeliveryFailure, StoreUnavailable
from chatter_quote.tracking import FileTrackingLog

QUOTES = [
    Quote(id=1, text="First", tags={"morning"}),
    Quote(id=2, text="Second", tags={"morning"}),
    Quote(id=3, text="Third", tags={"morning"}),
]


@pytest.fixture
def tracking(tmp_path):
    return FileTrackingLog(tmp_path / "tracking")


@pytest.fixture
def sent_log_path(tmp_path):
    return tmp_path / "quotes.log"


@pytest.fixture
def make_engine(make_config, fake_scheduler, tracking, sink, sent_log_path):
    def _make_engine(config=None, quotes=QUOTES, **overrides):
        kwargs = {
            "scheduler": fake_scheduler,
            "tracking_log": tracking,
            "sink": sink,
            "sent_log": SentQuoteLog(sent_log_path),
            "rng": random.Random(99),
            "load_schedules": lambda: [],
            "load_quotes": lambda tags: [q for q in quotes if q.tags & set(tags)],
        }
        kwargs.update(overrides)
        return QuoteEngine(config or make_config(), **kwargs)
    return _make_engine


def _quote_jobs(scheduler):
    return scheduler.list_jobs_in_group(QUOTE_GROUP)


class TestScheduleDelivery:
    def test_queues_one_shot_within_delay_window(self, make_engine, fake_scheduler):
        engine = make_engine()
        now = fake_scheduler.now()
        engine.schedule_delivery("Hello", 5, 60, quote_id=1, schedule_name="daily")

        [job] = _quote_jobs(fake_scheduler)
        assert not job.repeating
        assert now + timedelta(seconds=5) <= job.next_run_at <= now + timedelta(seconds=65)
        assert job.data["text"] == "Hello"
        assert job.data["quote_id"] == 1
        assert job.data["schedule_name"] == "daily"
        assert job.data["delivery_id"] == job.name

    def test_zero_delay(self, make_engine, fake_scheduler):
        engine = make_engine()
        engine.schedule_delivery("Now", 0, 0)
        [job] = _quote_jobs(fake_scheduler)
        assert job.next_run_at == fake_scheduler.now()

    def test_each_delivery_gets_own_job(self, make_engine, fake_scheduler):
        engine = make_engine()
        engine.schedule_delivery("Same", 0, 10)
        engine.schedule_delivery("Same", 0, 10)
        assert len(_quote_jobs(fake_scheduler)) == 2


class TestDeliver:
    def test_sends_and_logs(self, make_engine, fake_scheduler, sink, sent_log_path):
        engine = make_engine()
        engine.schedule_delivery("Hello", 0, 0, quote_id=1, schedule_name="daily")
        [job] = _quote_jobs(fake_scheduler)
        fake_scheduler.fire(QUOTE_GROUP, job.name)

        assert sink.sent == [("Hello", job.name)]
        assert _quote_jobs(fake_scheduler) == []
        line = sent_log_path.read_text().strip()
        assert line.endswith(" Hello")

    def test_failure_is_logged_not_raised(self, make_engine, make_sink, sent_log_path, caplog):
        engine = make_engine(sink=make_sink(fail_with=DeliveryFailure("Talk down")))
        with caplog.at_level("ERROR", logger="chatter_quote.engine"):
            engine.deliver({"text": "Hello", "quote_id": 1, "schedule_name": "daily"})
        assert "Talk down" in caplog.text
        assert not sent_log_path.exists()


class TestSelectAndSchedule:
    def test_marks_used_when_scheduled(self, make_engine, fake_scheduler, tracking):
        engine = make_engine()
        quote = engine.select_and_schedule_quote("daily", ["morning"])

        assert tracking.load("daily").ids == {quote.id}
        [job] = _quote_jobs(fake_scheduler)
        assert job.data["text"] == quote.text

    def test_marked_even_if_delivery_fails(self, make_engine, make_sink, fake_scheduler, tracking):
        engine = make_engine(sink=make_sink(fail_with=DeliveryFailure("nope")))
        quote = engine.select_and_schedule_quote("daily", ["morning"])
        [job] = _quote_jobs(fake_scheduler)
        fake_scheduler.fire(QUOTE_GROUP, job.name)
        assert tracking.load("daily").ids == {quote.id}

    def test_mark_on_delivery(self, make_engine, make_config, fake_scheduler, tracking):
        config = make_config(engine=EngineConfig(mark_used=MARK_USED_ON_DELIVERY))
        engine = make_engine(config=config)
        quote = engine.select_and_schedule_quote("daily", ["morning"])
        assert tracking.load("daily").ids == set()

        [job] = _quote_jobs(fake_scheduler)
        fake_scheduler.fire(QUOTE_GROUP, job.name)
        assert tracking.load("daily").ids == {quote.id}

    def test_mark_on_delivery_failed_send_not_marked(
        self, make_engine, make_config, make_sink, fake_scheduler, tracking,
    ):
        config = make_config(engine=EngineConfig(mark_used=MARK_USED_ON_DELIVERY))
        engine = make_engine(config=config, sink=make_sink(fail_with=DeliveryFailure("nope")))
        engine.select_and_schedule_quote("daily", ["morning"])
        [job] = _quote_jobs(fake_scheduler)
        fake_scheduler.fire(QUOTE_GROUP, job.name)
        assert tracking.load("daily").ids == set()

    def test_no_eligible_quotes(self, make_engine, fake_scheduler, caplog):
        engine = make_engine()
        with caplog.at_level("INFO", logger="chatter_quote.engine"):
            assert engine.select_and_schedule_quote("daily", ["nothing-tagged"]) is None
        assert _quote_jobs(fake_scheduler) == []
        assert "No eligible quotes" in caplog.text

    def test_store_failure_propagates(self, make_engine):
        def broken(tags):
            raise StoreUnavailable("locked")

        engine = make_engine(load_quotes=broken)
        with pytest.raises(StoreUnavailable):
            engine.select_and_schedule_quote("daily", ["morning"])

    def test_three_quotes_sent_without_repeat(self, make_engine, fake_scheduler, sink):
        engine = make_engine()
        for _ in range(3):
            engine.select_and_schedule_quote("daily", ["morning"])
            [job] = _quote_jobs(fake_scheduler)
            fake_scheduler.fire(QUOTE_GROUP, job.name)
        assert sorted(text for text, _ in sink.sent) == ["First", "Second", "Third"]


class TestFireSchedule:
    def test_fire_schedule_queues_quote(self, make_engine, fake_scheduler):
        engine = make_engine()
        engine.fire_schedule({"name": "daily", "cron": "0 0 8 * * ?", "tags": ["morning"]})
        assert len(_quote_jobs(fake_scheduler)) == 1

    def test_fire_schedule_never_raises(self, make_engine, caplog):
        def broken(tags):
            raise StoreUnavailable("locked")

        engine = make_engine(load_quotes=broken)
        with caplog.at_level("ERROR", logger="chatter_quote.engine"):
            engine.fire_schedule({"name": "daily", "tags": ["morning"]})
        assert "locked" in caplog.text


class TestLifecycle:
    def test_start_adds_sync_job(self, make_engine, fake_scheduler):
        engine = make_engine()
        engine.start()
        assert fake_scheduler.started
        job = fake_scheduler.get_job(ENGINE_GROUP, SYNC_JOB_NAME)
        assert job is not None
        assert job.trigger.seconds == 15
        assert job.next_run_at == fake_scheduler.now()

    def test_sync_job_reconciles(self, make_engine, fake_scheduler):
        engine = make_engine(load_schedules=lambda: [Schedule("daily", "0 0 8 * * ?", {"morning"})])
        engine.start()
        fake_scheduler.fire(ENGINE_GROUP, SYNC_JOB_NAME)
        assert fake_scheduler.get_job(SCHEDULE_GROUP, "daily") is not None

    def test_stop(self, make_engine, fake_scheduler):
        engine = make_engine()
        engine.start()
        engine.stop()
        assert fake_scheduler.shut_down


class TestEndToEnd:
    def test_daily_schedule_from_database(
        self, db_path, make_config, fake_scheduler, sink, sent_log_path, tracking,
    ):
        with db.get_db(db_path) as conn:
            db.add_quote(conn, "Carpe diem", ["morning"])
            db.add_quote(conn, "Memento mori", ["morning"])
            db.add_quote(conn, "Not tonight", ["evening"])
            db.add_schedule(conn, "daily", "0 0 8 * * ?", ["morning"])

        engine = QuoteEngine(
            make_config(db_path=db_path),
            scheduler=fake_scheduler,
            tracking_log=tracking,
            sink=sink,
            sent_log=SentQuoteLog(sent_log_path),
            rng=random.Random(5),
        )
        engine.sync()
        assert fake_scheduler.get_job(SCHEDULE_GROUP, "daily") is not None

        for _ in range(2):
            fake_scheduler.fire(SCHEDULE_GROUP, "daily")
            [job] = _quote_jobs(fake_scheduler)
            fake_scheduler.fire(QUOTE_GROUP, job.name)

        assert sorted(text for text, _ in sink.sent) == ["Carpe diem", "Memento mori"]
        assert len(sent_log_path.read_text().splitlines()) == 2

        # The next firing starts a new cycle
        fake_scheduler.fire(SCHEDULE_GROUP, "daily")
        [job] = _quote_jobs(fake_scheduler)
        assert job.data["text"] in {"Carpe diem", "Memento mori"}
