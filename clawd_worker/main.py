"""
Worker entry point.

    python -m clawd_worker.main [--once] [--dry-run] [--serve]
"""
import asyncio
import logging
import signal
import sys

from .api import Worker, build_worker
from .config import WorkerConfig, load_config

logger = logging.getLogger("clawd_worker.main")


async def run_worker(cfg: WorkerConfig, worker: Worker = None) -> int:
    """Run one cycle (``--once``) or the interval loop until SIGINT/SIGTERM."""
    worker = worker or build_worker(cfg)
    scheduler = worker.scheduler

    try:
        if cfg.run_once:
            await scheduler.run_once()
            return 1 if scheduler.state.last_cycle_error else 0

        handle = scheduler.start()
        loop = asyncio.get_running_loop()

        def _shutdown(signame: str):
            logger.info(f"Received {signame}, shutting down...")
            asyncio.ensure_future(handle.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _shutdown, sig.name)
            except NotImplementedError:
                pass

        await handle.wait()
        return 0
    finally:
        await worker.close()


def main():
    """Entry point."""
    try:
        cfg = load_config()
    except ValueError as e:
        logger.error(f"CONFIGURATION ERROR: {e}")
        sys.exit(1)

    if not cfg.enabled:
        logger.info("AGENT_WORKER_ENABLED is false; exiting.")
        return

    logger.info(f"Mode: {cfg.get_mode_description()}")
    if not cfg.dry_run and not cfg.privy_configured():
        logger.warning("Privy credentials not set. Votes will fail at signing.")
        logger.warning("Set PRIVY_APP_ID and PRIVY_APP_SECRET environment variables.")
    if not cfg.reasoning_api_key:
        logger.warning("ZAI_API_KEY not set. Every decision will fail.")

    if "--serve" in sys.argv[1:]:
        import uvicorn
        from .api import app
        uvicorn.run(app, host="0.0.0.0", port=cfg.port)
        return

    sys.exit(asyncio.run(run_worker(cfg)))


if __name__ == "__main__":
    main()
