"""
PoB Snapshot Indexer
====================

Read-only observer that mirrors PoB voting and certificate contracts into
the snapshot store.

Endpoints:
- GET /: Health check + build info
- GET /health: Kubernetes health check
- GET /stats: Configured networks and polling task state
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI

from pob_indexer import config
from pob_indexer.db.store import create_store
from pob_indexer.models.responses import HealthResponse, StatsResponse
from pob_indexer.tasks.cert_indexer import CertSnapshotIndexer
from pob_indexer.tasks.iteration_indexer import IterationSnapshotIndexer
from pob_indexer.tasks.scheduler import PollingTask
from pob_indexer.utils.chain_pollers import ChainPollerSet
from pob_indexer.utils.content_cache import ContentCache
from pob_indexer.utils.ipfs_client import IPFSClient
from pob_indexer.utils.networks import load_networks
from pob_indexer.utils.retry_tracker import RetryTracker

logger = logging.getLogger(__name__)


def build_tasks(store=None, networks=None):
    """
    Wire store, retry tracker, content cache, pollers and both indexers.

    Returns:
        (pollers, [PollingTask, ...])
    """
    store = store or create_store()
    networks = networks if networks is not None else load_networks()

    retry_tracker = RetryTracker(store)
    content_cache = ContentCache(store, IPFSClient(), retry_tracker)
    pollers = ChainPollerSet(networks)

    iteration_indexer = IterationSnapshotIndexer(store, pollers, content_cache)
    cert_indexer = CertSnapshotIndexer(store, pollers, content_cache)

    tasks = [
        PollingTask("iteration-indexer", iteration_indexer.run_tick, config.ITERATION_POLL_INTERVAL),
        PollingTask("cert-indexer", cert_indexer.run_tick, config.CERT_POLL_INTERVAL),
    ]
    return pollers, tasks


# ============================================================
# Lifespan Context Manager (for background tasks)
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    pollers, polling_tasks = build_tasks()
    app.state.pollers = pollers
    app.state.polling_tasks = polling_tasks

    print("=" * 80)
    print("🚀 STARTING INDEXER TASKS")
    print("=" * 80)
    handles = []
    for task in polling_tasks:
        handles.append(asyncio.create_task(task.run_forever()))
        print(f"✅ {task.name} started (every {task.interval_seconds}s)")
    print("=" * 80 + "\n")

    try:
        yield
    finally:
        print("\n" + "=" * 80)
        print("🛑 SHUTTING DOWN INDEXER")
        print("=" * 80)

        for handle in handles:
            handle.cancel()

        print("   ⏳ Waiting for tasks to finish...")
        results = await asyncio.gather(*handles, return_exceptions=True)
        for task, result in zip(polling_tasks, results):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                print(f"   ⚠️  {task.name} error during shutdown: {result}")

        print("   ✅ All background tasks stopped")
        print("=" * 80 + "\n")


# ============================================================
# Create FastAPI App
# ============================================================

app = FastAPI(
    title="PoB Snapshot Indexer",
    description="Read-only mirror of PoB voting and certificate contracts",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================
# Health Check Endpoints
# ============================================================

@app.get("/", response_model=HealthResponse)
async def root():
    """Health check + build info."""
    return HealthResponse(
        service="pob-indexer",
        status="ok",
        build_id=config.BUILD_ID,
        github_commit=config.GITHUB_COMMIT,
        timestamp=datetime.utcnow().isoformat(),
    )


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/stats", response_model=StatsResponse)
async def stats():
    pollers = getattr(app.state, "pollers", None)
    polling_tasks = getattr(app.state, "polling_tasks", [])
    return StatsResponse(
        networks={cid: n.name for cid, n in pollers.networks.items()} if pollers else {},
        tasks={task.name: task.status() for task in polling_tasks},
    )


def main():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    try:
        config.validate_config()
    except ValueError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)

    config.print_config_summary()
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
