"""
Standalone runner: ``python -m sentinel``.

Starts the training orchestrator with settings from the environment and
keeps its background loops alive until interrupted.
"""

import asyncio
import logging

from sentinel.config import get_settings
from sentinel.logging_config import setup_logging
from sentinel.training import TrainingOrchestrator

logger = logging.getLogger("sentinel")


async def run_orchestrator(stop_event: asyncio.Event = None) -> None:
    """Run the orchestrator until ``stop_event`` is set or the task is cancelled."""
    settings = get_settings()
    orchestrator = TrainingOrchestrator.from_settings(settings)
    stop_event = stop_event or asyncio.Event()
    await orchestrator.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down training orchestrator...")
        await orchestrator.stop()


def main() -> None:
    setup_logging(get_settings().log_level)
    try:
        asyncio.run(run_orchestrator())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
