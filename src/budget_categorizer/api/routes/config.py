from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from budget_categorizer.core import configuration

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("")
async def read_config() -> dict[str, object]:
    return configuration.build_config_context()


@router.post("")
async def save_config(request: Request, payload: dict[str, Any]) -> JSONResponse:
    values = {key: "" if value is None else str(value) for key, value in payload.items()}
    errors, updates = configuration.apply_config_updates(values)
    if errors:
        return JSONResponse(status_code=422, content={"errors": errors})
    configuration.apply_runtime_updates(request.app, updates)
    return JSONResponse(content={"updated": sorted(updates)})
