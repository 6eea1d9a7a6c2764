import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from budget_categorizer.api.dependencies import get_service, get_transactions
from budget_categorizer.api.schemas import AssignRequest, FeedbackRequest
from budget_categorizer.manager import CategorizerService
from budget_categorizer.models import AssignmentStatus, Transaction
from budget_categorizer.stores.base import TransactionStore

router = APIRouter(prefix="/api", tags=["transactions"])


@router.post("/transactions", response_model=Transaction, status_code=201)
async def create_transaction(
    transaction: Transaction,
    store: Annotated[TransactionStore, Depends(get_transactions)],
) -> Transaction:
    return store.save(transaction)


@router.get("/transactions/{user_id}", response_model=list[Transaction])
async def list_transactions(
    user_id: str,
    store: Annotated[TransactionStore, Depends(get_transactions)],
    status: AssignmentStatus | None = None,
) -> list[Transaction]:
    statuses = {status} if status else None
    transactions = store.list_for_user(user_id, statuses=statuses)
    transactions.sort(key=lambda t: t.date, reverse=True)
    return transactions


@router.post("/transactions/{transaction_id}/assign", response_model=Transaction)
async def assign_transaction(
    transaction_id: str,
    req: AssignRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> Transaction:
    return await asyncio.to_thread(service.assign_manually, req.user_id, transaction_id, req.category_id)


@router.post("/feedback", response_model=Transaction)
async def record_feedback(
    req: FeedbackRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> Transaction:
    return await asyncio.to_thread(
        service.record_feedback,
        req.user_id,
        req.transaction_id,
        req.suggested_category_id,
        req.chosen_category_id,
        req.accepted,
        req.pattern_used,
    )
