from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from inbox_categorizer.api.routes import classify, inbox, training
from inbox_categorizer.core import settings
from inbox_categorizer.logger import get_logger, setup_logging
from inbox_categorizer.manager import CategorizerService
from inbox_categorizer.services.inbox import InboxService
from inbox_categorizer.services.reclassification import ReclassificationService
from inbox_categorizer.storage.memory import (
    InMemoryModelRepository,
    InMemoryRuleRepository,
    InMemoryTransactionRepository,
)

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        transactions = InMemoryTransactionRepository()
        rules = InMemoryRuleRepository()
        models = InMemoryModelRepository()

        service = CategorizerService(
            threshold=settings.auto_approve_threshold(),
            max_pattern_length=settings.rule_pattern_max_length(),
        )
        chunk_size = settings.reclassify_chunk_size()
        reclassifier = ReclassificationService(
            service,
            transactions,
            rules,
            models,
            chunk_size=chunk_size,
            page_size=settings.training_page_size(),
            stale_after=timedelta(hours=settings.model_stale_hours()),
            training_options=settings.training_options(),
        )
        inbox_service = InboxService(service, reclassifier, transactions, rules, chunk_size=chunk_size)

        app.state.service = service
        app.state.reclassifier = reclassifier
        app.state.inbox = inbox_service
        app.state.rules = rules

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

    app = FastAPI(title="Inbox Categorizer", lifespan=lifespan)

    app.include_router(classify.router)
    app.include_router(training.router)
    app.include_router(inbox.router)

    return app


app = create_app()
