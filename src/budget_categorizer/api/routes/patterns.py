import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from budget_categorizer.api.dependencies import get_service
from budget_categorizer.api.schemas import UserRequest
from budget_categorizer.manager import CategorizerService
from budget_categorizer.models import Category, PatternImprovementReport, UserMerchantPattern

router = APIRouter(prefix="/api", tags=["patterns"])


@router.get("/categories", response_model=list[Category])
async def list_categories(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[Category]:
    return service.categories.all()


@router.get("/patterns/{user_id}", response_model=list[UserMerchantPattern])
async def list_personal_patterns(
    user_id: str,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[UserMerchantPattern]:
    return service.personal_patterns(user_id)


@router.post("/patterns/learn", response_model=list[UserMerchantPattern])
async def learn_patterns(
    req: UserRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[UserMerchantPattern]:
    return await asyncio.to_thread(service.learn_from_manual_assignments, req.user_id)


@router.post("/patterns/improve", response_model=PatternImprovementReport)
async def improve_patterns(
    req: UserRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> PatternImprovementReport:
    return await asyncio.to_thread(service.improve_existing_patterns, req.user_id)
