"""
FastAPI Worker Service - health, status and manual triggers for the vote worker.
The background scheduler loop is started from the app lifespan.
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .agents.decision import VoteDecisionEngine
from .agents.executor import CycleExecutor
from .agents.observability import ObservabilityAgent
from .agents.rate_limiter import RateLimiter
from .agents.scheduler import CycleScheduler, SchedulerHandle
from .agents.signer import TransactionSigner
from .config import WorkerConfig, load_config
from .errors import CycleInProgress
from .resilience import get_all_circuit_states
from .services.governance_client import GovernanceClient
from .services.privy_client import PrivyWalletClient
from .services.reasoning_client import ReasoningClient
from .services.stdb_client import StdbClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [WORKER] %(levelname)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("clawd_worker")


@dataclass
class Worker:
    """Fully wired worker: scheduler plus the clients it owns."""
    config: WorkerConfig
    scheduler: CycleScheduler
    rate_limiter: RateLimiter
    observability: ObservabilityAgent
    clients: List[Any] = field(default_factory=list)

    async def close(self):
        for client in self.clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")


def build_worker(cfg: WorkerConfig) -> Worker:
    """Wire store, proposal source, reasoning, signer and scheduler from config."""
    stdb = StdbClient(cfg)
    governance = GovernanceClient(cfg)
    privy = PrivyWalletClient(cfg)
    reasoning = ReasoningClient(cfg)

    rate_limiter = RateLimiter(
        max_transactions=cfg.rate_limit_max_transactions,
        window_seconds=cfg.rate_limit_window_seconds,
    )
    observability = ObservabilityAgent(cfg)
    executor = CycleExecutor(
        store=stdb,
        proposals=governance,
        decision_engine=VoteDecisionEngine(reasoning, cfg.default_confidence_threshold),
        signer=TransactionSigner(privy, rate_limiter),
        observability=observability,
        throttle_delay_seconds=cfg.throttle_delay_seconds,
    )
    scheduler = CycleScheduler(executor, cfg)

    return Worker(
        config=cfg,
        scheduler=scheduler,
        rate_limiter=rate_limiter,
        observability=observability,
        clients=[stdb, governance, privy],
    )


_worker: Optional[Worker] = None
_handle: Optional[SchedulerHandle] = None


def get_worker() -> Worker:
    if _worker is None:
        raise HTTPException(status_code=503, detail="Worker not initialized")
    return _worker


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _worker, _handle
    logger.info("Starting Clawd vote worker service...")
    if _worker is None:
        _worker = build_worker(load_config())
    cfg = _worker.config
    logger.info(f"Mode: {cfg.get_mode_description()}")
    logger.info(f"Config: {cfg.runtime_summary()}")

    if cfg.enabled:
        _handle = _worker.scheduler.start()
    else:
        logger.warning("AGENT_WORKER_ENABLED is false - background loop not started")

    yield

    if _handle:
        await _handle.stop()
        _handle = None
    await _worker.close()
    logger.info("Worker service shutdown complete")


app = FastAPI(
    title="Clawd Vote Worker",
    version="0.1.0",
    lifespan=lifespan
)


@app.get("/health")
async def health_check():
    worker = get_worker()
    return worker.scheduler.state.health()


@app.get("/status")
async def get_status() -> Dict[str, Any]:
    worker = get_worker()
    status = worker.scheduler.state.model_dump(mode="json")
    status["config"] = worker.config.runtime_summary()
    status["mode"] = worker.config.get_mode_description()
    status["rate_limits"] = worker.rate_limiter.get_summary()
    status["circuits"] = get_all_circuit_states()
    return status


async def _trigger(dry_run: Optional[bool]):
    worker = get_worker()
    try:
        summary = await worker.scheduler.trigger(dry_run=dry_run)
    except CycleInProgress as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except asyncio.TimeoutError:
        return JSONResponse(status_code=500, content={"error": "Cycle timed out"})
    except Exception as e:
        logger.error(f"Triggered cycle failed: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    return summary.model_dump(mode="json")


@app.post("/trigger")
async def trigger_cycle():
    return await _trigger(dry_run=None)


@app.post("/cycle/dry-run")
async def trigger_dry_run():
    return await _trigger(dry_run=True)


@app.get("/cycles/recent")
async def recent_cycles(limit: int = 10):
    worker = get_worker()
    return worker.observability.get_recent_cycles(limit=limit)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("WORKER_PORT", "4000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
