"""The quote engine: turns stored schedules into randomly-timed quote deliveries.

Three job groups drive everything:

- "engine" holds the single interval job that syncs the scheduler with the
  schedules in the database.
- "schedule" holds one recurring cron job per sending schedule. Firing one
  doesn't send anything; it picks a quote and queues it in the next group.
- "quote" holds transient one-shot jobs that actually deliver a message
  after a random delay, so quotes don't arrive at a predictable instant.
"""

import logging
import random
import uuid
from datetime import timedelta
from typing import Callable, Iterable

from . import db
from .config import Config
from .db import Quote, Schedule
from .delivery import DeliverySink, SentQuoteLog, make_delivery_sink
from .errors import NoEligibleQuotes
from .jobs import JobScheduler
from .reconciler import Reconciler
from .selector import select_unsent_quote
from .tracking import TrackingLog, make_tracking_log

logger = logging.getLogger("chatter_quote.engine")

ENGINE_GROUP = "engine"
SCHEDULE_GROUP = "schedule"
QUOTE_GROUP = "quote"

SYNC_JOB_NAME = "Sync quote schedules with database"


class QuoteEngine:
    def __init__(
        self,
        config: Config,
        scheduler: JobScheduler | None = None,
        tracking_log: TrackingLog | None = None,
        sink: DeliverySink | None = None,
        sent_log: SentQuoteLog | None = None,
        rng: random.Random | None = None,
        load_schedules: Callable[[], list[Schedule]] | None = None,
        load_quotes: Callable[[Iterable[str]], list[Quote]] | None = None,
    ):
        self.config = config
        self.scheduler = scheduler or JobScheduler(
            max_workers=config.engine.max_workers,
            tick_interval=config.engine.tick_interval,
            timezone=config.engine.timezone,
        )
        self.tracking_log = tracking_log or make_tracking_log(config)
        self.sink = sink or make_delivery_sink(config)
        self.sent_log = sent_log or SentQuoteLog(config.delivery.sent_log)
        self.rng = rng or random.Random()
        self._load_schedules = load_schedules or (lambda: db.load_schedules(config.db_path))
        self._load_quotes = load_quotes or (
            lambda tags: db.load_quotes_with_tags(config.db_path, tags)
        )
        self.reconciler = Reconciler(
            self.scheduler, self._load_schedules, self.fire_schedule, group=SCHEDULE_GROUP,
        )

    # ------------------------------------------------------------------
    # One-shot delivery
    # ------------------------------------------------------------------

    def schedule_delivery(
        self,
        quote_text: str,
        min_delay_seconds: int,
        max_delay_seconds: int,
        quote_id: int | None = None,
        schedule_name: str | None = None,
    ) -> None:
        """Queue a single, non-repeating send of quote_text after a random delay."""
        delay = min_delay_seconds + self.rng.randint(0, max(max_delay_seconds, 0))
        run_at = self.scheduler.now() + timedelta(seconds=delay)
        delivery_id = str(uuid.uuid4())
        self.scheduler.schedule_once(
            QUOTE_GROUP,
            delivery_id,
            run_at,
            self.deliver,
            {
                "text": quote_text,
                "quote_id": quote_id,
                "schedule_name": schedule_name,
                "delivery_id": delivery_id,
            },
        )
        logger.info(
            "Quote %s (schedule '%s') will be sent at %s (in %ds)",
            quote_id, schedule_name, run_at.strftime("%Y-%m-%d %H:%M:%S"), delay,
        )

    def deliver(self, data: dict) -> None:
        """Body of a one-shot delivery job. Never raises."""
        quote_id = data.get("quote_id")
        schedule_name = data.get("schedule_name")
        text = data["text"]
        try:
            self.sink.send(text, reference_id=data.get("delivery_id"))
        except Exception as e:
            logger.error(
                "Failed to deliver quote %s (schedule '%s'): %s",
                quote_id, schedule_name, e,
            )
            return

        logger.info("Delivered quote %s (schedule '%s')", quote_id, schedule_name)
        self.sent_log.record(text)

        if self.config.mark_used_on_delivery and schedule_name and quote_id is not None:
            try:
                self.tracking_log.append(schedule_name, quote_id)
            except Exception as e:
                logger.error(
                    "Delivered quote %s but could not record it for '%s': %s",
                    quote_id, schedule_name, e,
                )

    # ------------------------------------------------------------------
    # Recurring schedule firing
    # ------------------------------------------------------------------

    def select_and_schedule_quote(self, schedule_name: str, tags: Iterable[str]) -> Quote | None:
        """
        Pick a quote for a schedule and queue it for sending.

        Does everything except the actual send. Returns the queued quote, or
        None if no quotes match the tags. Store and scheduler failures
        propagate to the caller.
        """
        tags = sorted(tags)
        eligible = self._load_quotes(tags)
        try:
            quote = select_unsent_quote(eligible, self.tracking_log, schedule_name, rng=self.rng)
        except NoEligibleQuotes:
            logger.info("No eligible quotes for schedule '%s' (tags: %s)", schedule_name, ", ".join(tags))
            return None

        self.schedule_delivery(
            quote.text,
            self.config.engine.send_delay_min,
            self.config.engine.send_delay_max,
            quote_id=quote.id,
            schedule_name=schedule_name,
        )
        # Marked as used once queued, even if the send later fails
        if not self.config.mark_used_on_delivery:
            self.tracking_log.append(schedule_name, quote.id)
        return quote

    def fire_schedule(self, data: dict) -> None:
        """Body of a recurring schedule job. Never raises."""
        schedule_name = data["name"]
        try:
            self.select_and_schedule_quote(schedule_name, data.get("tags", []))
        except Exception as e:
            logger.error("Error firing schedule '%s': %s", schedule_name, e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def sync(self) -> None:
        self.reconciler.sync()

    def _sync_job(self, data: dict) -> None:
        self.reconciler.sync()

    def start(self) -> None:
        """Start the scheduler and the periodic schedule sync (first sync runs now)."""
        self.scheduler.start()
        self.scheduler.schedule_interval(
            ENGINE_GROUP, SYNC_JOB_NAME, self.config.engine.sync_interval, self._sync_job,
        )
        logger.info(
            "Quote engine started (sync every %ds, send delay %d+rand(0..%d)s)",
            self.config.engine.sync_interval,
            self.config.engine.send_delay_min,
            self.config.engine.send_delay_max,
        )

    def stop(self, wait: bool = True) -> None:
        """Shut everything down; opposite of start."""
        self.scheduler.shutdown(wait=wait)
        logger.info("Quote engine stopped")
