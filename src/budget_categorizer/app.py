import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from budget_categorizer.api.routes import classify, config, imports, patterns, transactions
from budget_categorizer.core import settings
from budget_categorizer.core.pattern_table import load_pattern_table
from budget_categorizer.errors import CsvFormatError, ImportSessionError, NotFoundError
from budget_categorizer.logger import get_logger, setup_logging
from budget_categorizer.manager import CategorizerService
from budget_categorizer.services.csv_import import CsvImportWizard
from budget_categorizer.services.pipeline import ClassificationPipeline
from budget_categorizer.services.sessions import ImportSessionStore
from budget_categorizer.stores.memory import (
    InMemoryCategoryStore,
    InMemoryFeedbackStore,
    InMemoryMappingTemplateStore,
    InMemoryTransactionStore,
    LoggingBudgetNotifier,
)
from budget_categorizer.stores.patterns import InMemoryPatternStore

logger = get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ImportSessionError)
    async def session_conflict(_: Request, exc: ImportSessionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(CsvFormatError)
    async def bad_csv(_: Request, exc: CsvFormatError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        table = load_pattern_table(os.getenv("PATTERN_TABLE_PATH"))
        data_dir = os.getenv("DATA_DIR", settings.DATA_DIR)
        settings.ensure_dirs(data_dir)
        pattern_store = InMemoryPatternStore(
            table.patterns(),
            data_path=os.path.join(data_dir, "patterns.json"),
        )
        transaction_store = InMemoryTransactionStore()
        service = CategorizerService(
            patterns=pattern_store,
            transactions=transaction_store,
            categories=InMemoryCategoryStore(table.categories, table.category_aliases),
            feedback=InMemoryFeedbackStore(),
            budget=LoggingBudgetNotifier(),
            table=table,
            thresholds=settings.load_thresholds(),
        )
        wizard = CsvImportWizard(
            ImportSessionStore(settings.CSV_SESSION_TTL, settings.CSV_MAX_SESSIONS),
            transaction_store,
            InMemoryMappingTemplateStore(),
            preview_rows=settings.CSV_PREVIEW_ROWS,
            day_first=settings.CSV_DAY_FIRST,
            max_upload_bytes=settings.CSV_MAX_UPLOAD_BYTES,
        )

        app.state.service = service
        app.state.transactions = transaction_store
        app.state.pipeline = ClassificationPipeline(service)
        app.state.wizard = wizard

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

    app = FastAPI(title="Budget Categorizer", lifespan=lifespan)
    _register_error_handlers(app)

    app.include_router(classify.router)
    app.include_router(transactions.router)
    app.include_router(patterns.router)
    app.include_router(imports.router)
    app.include_router(config.router)

    return app


app = create_app()
