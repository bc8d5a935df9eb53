"""
FastAPI application for the payroll service.

The lifespan connects the database and the node, and runs the scheduler
loop on the application's event loop.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payroll import __version__
from payroll.api.routes import router
from payroll.config import PayrollConfig, get_config
from payroll.core.payroll import PayrollService
from payroll.core.scheduler import PayrollScheduler
from payroll.state.database import Database

logger = structlog.get_logger(__name__)


def create_app(
    config: Optional[PayrollConfig] = None,
    database: Optional[Database] = None,
    service: Optional[PayrollService] = None,
    scheduler: Optional[PayrollScheduler] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Create the payroll API application.

    Components that are not passed in are created from the configuration
    and owned by the application: they are connected on startup and closed
    on shutdown.

    Args:
        config: Payroll configuration
        database: Recipient store and transaction log
        service: Payroll service
        scheduler: Scheduler guarding payroll runs
        start_scheduler: Run the scheduling loop during the app lifespan

    Returns:
        FastAPI application
    """
    config = config or get_config()
    owns_database = database is None
    owns_service = service is None

    if database is None:
        database = Database(config)
    if service is None:
        service = PayrollService(
            recipient_source=database,
            transaction_log=database,
            config=config,
        )
    if scheduler is None:
        scheduler = PayrollScheduler(service, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        if owns_database:
            await database.connect()

        try:
            await service.initialize()
        except Exception as e:
            # Runs retry initialization; the API stays up for recipient management.
            logger.error("payroll_initialize_failed", error=str(e))

        scheduler_task: Optional[asyncio.Task] = None
        if start_scheduler:
            scheduler_task = asyncio.create_task(scheduler.start())

        logger.info("api_started", host=config.api_host, port=config.api_port)

        yield

        if scheduler_task:
            scheduler.stop()
            await scheduler_task

        if owns_service:
            await service.shutdown()
        if owns_database:
            await database.disconnect()

        logger.info("api_stopped")

    app = FastAPI(
        title="Cardano Batch Payroll",
        description="Scheduled ADA payroll from a single funding wallet",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.database = database
    app.state.service = service
    app.state.scheduler = scheduler

    app.include_router(router)

    return app
