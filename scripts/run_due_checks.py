"""
Script to run every quality query whose next execution time has passed.

Intended for cron-style deployments where the in-process scheduler is
disabled (QA_SCHEDULER_ENABLED=false).
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import engine
from core.logging import setup_logging
from pipeline.scheduler import QAScheduler

setup_logging()
logger = logging.getLogger(__name__)


async def run_due_checks():
    """Run all due quality queries once"""
    scheduler = QAScheduler()

    try:
        completed = await scheduler.run_due_queries()
        logger.info(f"Due quality checks completed: {completed} runs recorded")
    except Exception as e:
        logger.error(f"Due quality check error: {str(e)}")
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(run_due_checks())
