"""Keep the live recurring jobs in step with the schedules in the database."""

import logging
import threading
from typing import Callable

from .db import Schedule
from .jobs import JobFunc, JobScheduler, validate_cron

logger = logging.getLogger("chatter_quote.reconciler")


class Reconciler:
    """
    Mirrors every stored Schedule as one recurring job named after it.

    - New schedules get a job
    - Schedules whose cron or tags changed have their job replaced
    - Jobs whose schedule is gone are deleted

    Each schedule is handled in isolation: a failure is logged and the rest of
    the pass carries on. Passes never overlap.
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        load_schedules: Callable[[], list[Schedule]],
        fire_schedule: JobFunc,
        group: str = "schedule",
    ):
        self.scheduler = scheduler
        self.load_schedules = load_schedules
        self.fire_schedule = fire_schedule
        self.group = group
        self._lock = threading.Lock()

    def sync(self) -> None:
        with self._lock:
            try:
                schedules = self.load_schedules()
            except Exception as e:
                # Leave live jobs alone; an unreadable store is not an empty one
                logger.error("Skipping schedule sync, could not read schedules: %s", e)
                return

            for schedule in schedules:
                try:
                    self._create_or_update(schedule)
                except Exception as e:
                    logger.error("Failed to sync schedule '%s': %s", schedule.name, e)

            self._remove_obsolete({s.name for s in schedules})

    def _schedule_job(self, schedule: Schedule) -> None:
        self.scheduler.create_recurring(
            self.group,
            schedule.name,
            schedule.cron,
            self.fire_schedule,
            {"name": schedule.name, "cron": schedule.cron, "tags": sorted(schedule.tags)},
        )

    def _create_or_update(self, schedule: Schedule) -> None:
        existing = self.scheduler.get_job(self.group, schedule.name)
        if existing is None:
            self._schedule_job(schedule)
            logger.info(
                "Added job for new sending schedule '%s' (cron: %s, tags: %s)",
                schedule.name, schedule.cron, ", ".join(sorted(schedule.tags)),
            )
            return

        same_cron = existing.data.get("cron") == schedule.cron
        same_tags = set(existing.data.get("tags", [])) == set(schedule.tags)
        if same_cron and same_tags:
            return

        # Reject a bad new cron before tearing down the working job
        validate_cron(schedule.cron)
        self.scheduler.delete_job(self.group, schedule.name)
        self._schedule_job(schedule)
        logger.info(
            "Updated schedule '%s' to match database (cron: %s, tags: %s)",
            schedule.name, schedule.cron, ", ".join(sorted(schedule.tags)),
        )

    def _remove_obsolete(self, schedule_names: set[str]) -> None:
        for job in self.scheduler.list_jobs_in_group(self.group):
            if job.name in schedule_names:
                continue
            try:
                self.scheduler.delete_job(self.group, job.name)
                logger.info("Unscheduled '%s' because it's no longer in the database", job.name)
            except Exception as e:
                logger.error("Failed to unschedule '%s': %s", job.name, e)
