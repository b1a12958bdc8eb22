"""
Background scheduling of due quality queries.

An APScheduler interval job picks up every enabled, non-manual query whose
next execution time has passed and runs it in its own session.
"""

import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings
from core.database import async_session_maker
from core.exceptions import QAException, QueryAlreadyRunning
from pipeline.notifier import HttpNotificationDispatcher
from pipeline.repository import SQLAlchemyQARepository
from pipeline.runner import QualityCheckRunner

logger = logging.getLogger(__name__)


class QAScheduler:
    """Periodically runs quality queries whose next execution time has passed"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self.SessionLocal = async_session_maker
        self.dispatcher = HttpNotificationDispatcher()

    async def run_due_queries(self) -> int:
        """
        Run every due query once.

        Each query gets its own session so a failure cannot poison the
        next one. Returns the number of runs that were recorded.
        """
        now = datetime.utcnow()

        async with self.SessionLocal() as session:
            due = await SQLAlchemyQARepository(session).list_due_queries(now)
            due_queries = [(q.id, q.user_id) for q in due]

        if not due_queries:
            return 0

        logger.info(f"Scheduler: {len(due_queries)} quality queries due")
        completed = 0

        for query_id, user_id in due_queries:
            async with self.SessionLocal() as session:
                runner = QualityCheckRunner(
                    SQLAlchemyQARepository(session),
                    dispatcher=self.dispatcher
                )
                try:
                    outcome = await runner.run(query_id, user_id)
                    completed += 1
                    logger.info(f"Scheduler: query {query_id} -> {outcome.status.value}")
                except QueryAlreadyRunning:
                    logger.info(f"Scheduler: query {query_id} still running, skipped")
                except QAException as e:
                    logger.error(
                        f"Scheduler: query {query_id} failed - {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                except Exception:
                    logger.exception(f"Scheduler: unexpected error running query {query_id}")

        return completed

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_due_queries,
            trigger=IntervalTrigger(seconds=settings.QA_SCHEDULER_INTERVAL_SECONDS),
            id="qa_due_queries",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info("QA Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("QA Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
