"""
Update Scheduler - Runs the orchestrator on a recurring cron timetable.

Uses APScheduler's AsyncIOScheduler with a UTC CronTrigger. A scheduled
fire while a run is active is skipped with a log entry; shutdown waits
a bounded time for the active run and never cancels it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import ConfigError
from .orchestrator import TriggerResult, UpdateOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "docsync-scheduled-update"


def parse_schedule(expression: str) -> CronTrigger:
	"""
	Build a UTC trigger from a 5-field crontab expression.

	Raises:
		ConfigError: The expression is malformed
	"""
	try:
		return CronTrigger.from_crontab(expression, timezone=timezone.utc)
	except ValueError as e:
		raise ConfigError(f"Invalid update schedule {expression!r}: {e}") from e


class UpdateScheduler:
	"""
	Owns the recurring timer for one orchestrator.

	Usage:
		scheduler = UpdateScheduler(orchestrator, "0 2 * * sun")
		scheduler.start()
		...
		await scheduler.shutdown(grace=30)
	"""

	def __init__(
		self,
		orchestrator: UpdateOrchestrator,
		schedule: str,
		force_on_start: bool = False,
	):
		self.orchestrator = orchestrator
		self.schedule = schedule
		self.force_on_start = force_on_start
		self._trigger = parse_schedule(schedule)
		self._scheduler: Optional[AsyncIOScheduler] = None

	@property
	def started(self) -> bool:
		return self._scheduler is not None and self._scheduler.running

	@property
	def is_running(self) -> bool:
		"""True while an update run is active."""
		return self.orchestrator.is_running

	def start(self) -> Optional[TriggerResult]:
		"""
		Start the timer. Must be called from inside the event loop.

		Returns:
			The startup run's trigger result when force_on_start is set
		"""
		if self.started:
			logger.warning("Scheduler is already running")
			return None

		self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
		self._scheduler.add_job(
			self._scheduled_update,
			self._trigger,
			id=JOB_ID,
			max_instances=1,
			coalesce=True,
			misfire_grace_time=3600,
		)
		self._scheduler.start()
		logger.info(f"Update scheduler started: {self.schedule!r} (UTC), next run {self.next_run_time()}")

		if self.force_on_start:
			logger.info("Performing initial update on startup")
			return self.orchestrator.trigger(force=True)
		return None

	def next_run_time(self) -> Optional[datetime]:
		"""When the next scheduled run fires, or None when stopped."""
		if not self.started:
			return None
		job = self._scheduler.get_job(JOB_ID)
		return job.next_run_time if job else None

	async def _scheduled_update(self) -> None:
		result = self.orchestrator.trigger(force=False)
		if result.accepted:
			logger.info("Scheduled update triggered")
		else:
			logger.warning("Update is already in progress, skipping scheduled update")

	async def shutdown(self, grace: float = 30.0) -> bool:
		"""
		Stop accepting scheduled triggers and wait up to ``grace`` seconds
		for the active run.

		Returns:
			True if no run was left active
		"""
		if self.started:
			self._scheduler.shutdown(wait=False)
			logger.info("Update scheduler stopped")
		self._scheduler = None

		finished = await self.orchestrator.wait_idle(timeout=grace)
		if not finished:
			logger.warning(
				f"Active update did not finish within {grace:.0f}s; releasing resources anyway"
			)
		return finished
