from typing import Annotated

from fastapi import APIRouter, Depends

from budget_categorizer.api.dependencies import get_pipeline
from budget_categorizer.api.schemas import BulkClassifyRequest, ClassifyRequest, PeriodRequest, UserRequest
from budget_categorizer.models import BulkClassificationResult, ClassificationResult
from budget_categorizer.services.pipeline import ClassificationPipeline

router = APIRouter(prefix="/api/classify", tags=["classify"])


@router.post("", response_model=ClassificationResult)
async def classify_transaction(
    req: ClassifyRequest,
    pipeline: Annotated[ClassificationPipeline, Depends(get_pipeline)],
) -> ClassificationResult:
    return await pipeline.classify(req.transaction)


@router.post("/bulk", response_model=BulkClassificationResult)
async def classify_bulk(
    req: BulkClassifyRequest,
    pipeline: Annotated[ClassificationPipeline, Depends(get_pipeline)],
) -> BulkClassificationResult:
    return await pipeline.classify_many(req.user_id, req.transaction_ids)


@router.post("/period", response_model=BulkClassificationResult)
async def classify_period(
    req: PeriodRequest,
    pipeline: Annotated[ClassificationPipeline, Depends(get_pipeline)],
) -> BulkClassificationResult:
    return await pipeline.auto_assign_period(req.user_id, req.year, req.month)


@router.post("/stop")
async def stop_bulk(
    req: UserRequest,
    pipeline: Annotated[ClassificationPipeline, Depends(get_pipeline)],
) -> dict[str, bool]:
    return {"stopping": pipeline.request_stop(req.user_id)}
