import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from budget_categorizer.api.dependencies import get_wizard
from budget_categorizer.api.schemas import ApplyTemplateRequest
from budget_categorizer.models import MappingTemplate
from budget_categorizer.services.csv_import import (
    ColumnMapping,
    CsvImportWizard,
    ImportApprovals,
    ImportReport,
    MappingPreview,
    UploadPreview,
)

router = APIRouter(prefix="/api/import", tags=["import"])


@router.post("/csv", response_model=UploadPreview)
async def upload_csv(
    request: Request,
    user_id: str,
    wizard: Annotated[CsvImportWizard, Depends(get_wizard)],
) -> UploadPreview:
    # The file is sent as the raw request body; stop reading once it is too large.
    content = bytearray()
    async for chunk in request.stream():
        content.extend(chunk)
        wizard.check_upload_size(len(content))
    return await asyncio.to_thread(wizard.ingest, user_id, bytes(content))


@router.get("/templates/{user_id}", response_model=list[MappingTemplate])
async def list_templates(
    user_id: str,
    wizard: Annotated[CsvImportWizard, Depends(get_wizard)],
) -> list[MappingTemplate]:
    return wizard.list_templates(user_id)


@router.post("/{session_id}/template", response_model=ColumnMapping)
async def apply_template(
    session_id: str,
    user_id: str,
    req: ApplyTemplateRequest,
    wizard: Annotated[CsvImportWizard, Depends(get_wizard)],
) -> ColumnMapping:
    return wizard.apply_saved_mapping(user_id, session_id, req.bank_name, req.account_id)


@router.post("/{session_id}/mapping", response_model=MappingPreview)
async def map_columns(
    session_id: str,
    user_id: str,
    mapping: ColumnMapping,
    wizard: Annotated[CsvImportWizard, Depends(get_wizard)],
) -> MappingPreview:
    return await asyncio.to_thread(wizard.map_columns, user_id, session_id, mapping)


@router.post("/{session_id}/finalize", response_model=ImportReport)
async def finalize_import(
    session_id: str,
    user_id: str,
    approvals: ImportApprovals,
    wizard: Annotated[CsvImportWizard, Depends(get_wizard)],
) -> ImportReport:
    return await asyncio.to_thread(wizard.finalize, user_id, session_id, approvals)
