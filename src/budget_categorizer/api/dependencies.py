from fastapi import HTTPException, Request

from budget_categorizer.manager import CategorizerService
from budget_categorizer.services.csv_import import CsvImportWizard
from budget_categorizer.services.pipeline import ClassificationPipeline
from budget_categorizer.stores.base import TransactionStore


def _require_state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return value


def get_service(request: Request) -> CategorizerService:
    return _require_state(request, "service")  # type: ignore[return-value]


def get_pipeline(request: Request) -> ClassificationPipeline:
    return _require_state(request, "pipeline")  # type: ignore[return-value]


def get_wizard(request: Request) -> CsvImportWizard:
    return _require_state(request, "wizard")  # type: ignore[return-value]


def get_transactions(request: Request) -> TransactionStore:
    return _require_state(request, "transactions")  # type: ignore[return-value]
