"""
Scheduler health endpoints.

Small aiohttp server used by the orchestrator to probe the scheduler.
"""

import asyncio

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger


_scheduler: AsyncIOScheduler | None = None


def set_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Register the scheduler reported on by the endpoints."""
    global _scheduler
    _scheduler = scheduler


def scheduler_status() -> tuple[dict, int]:
    """
    Describe the registered scheduler.

    Returns:
        Tuple of (JSON body, HTTP status)
    """
    if _scheduler is None:
        return {"status": "unhealthy", "error": "Scheduler not initialized"}, 503

    jobs = _scheduler.get_jobs()
    return {
        "status": "healthy" if _scheduler.running else "stopped",
        "jobs": [
            {
                "id": job.id,
                "next_run_time": (
                    job.next_run_time.isoformat() if job.next_run_time else None
                ),
            }
            for job in jobs
        ],
    }, 200 if _scheduler.running else 503


async def health_handler(request: web.Request) -> web.Response:
    body, status = scheduler_status()
    return web.json_response(body, status=status)


async def liveness_handler(request: web.Request) -> web.Response:
    return web.json_response({"status": "alive"})


async def start_health_server(
    host: str = "0.0.0.0",
    port: int = 8081,
) -> web.AppRunner:
    """
    Start the health server.

    Returns:
        AppRunner to pass to ``stop_health_server``
    """
    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/liveness", liveness_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    await web.TCPSite(runner, host, port).start()
    logger.info(f"Health check server started on {host}:{port}")
    return runner


async def stop_health_server(runner: web.AppRunner, timeout: int = 5) -> None:
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
    except TimeoutError:
        logger.warning(f"Health check server cleanup timed out after {timeout}s")
