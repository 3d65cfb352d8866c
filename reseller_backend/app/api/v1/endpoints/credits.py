"""
Credit API Endpoints.

Balance transfers down the hierarchy, admin self credit, reversal and
hierarchy-scoped transaction history.
"""

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier
from reseller_backend.app.schemas.credits import (
    CreditCreate, SelfCreditRequest, CreditResponse, CreditListResponse,
    ParticipantResponse, ReversalResponse, CreditTarget
)
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.dependencies import get_current_user, get_ledger_service
from reseller_backend.app.core.guards import require_admin
from reseller_backend.app.domain.ledger.ledger_service import LedgerService, LedgerRecord, Participant
from reseller_backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/credits", tags=["Credits"])


def _participant(participant: Optional[Participant]) -> Optional[ParticipantResponse]:
    if participant is None:
        return None
    return ParticipantResponse(id=participant.id, name=participant.name, tier=participant.tier)


def _credit_response(record: LedgerRecord) -> CreditResponse:
    entry = record.entry
    return CreditResponse(
        id=entry.id,
        type=entry.entry_type.value,
        amount=entry.amount,
        sender=_participant(record.sender),
        target=_participant(record.target),
        sender_balance_after=entry.sender_balance_after,
        target_balance_after=entry.target_balance_after,
        created_at=entry.created_at
    )


@router.get("", response_model=ApiResponse[CreditListResponse])
async def list_credits(
    type_filter: Optional[str] = Query(None, alias="type", description="Filter by transaction type"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    current_user: Account = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """
    Transaction history, newest first.

    Admin sees everything, a distributor its own and its resellers'
    transactions, a reseller only its own.
    """
    records = await ledger.history(current_user.id, type_filter, limit)
    return ApiResponse(data=CreditListResponse(
        credits=[_credit_response(r) for r in records],
        total=len(records)
    ))


@router.get("/targets", response_model=ApiResponse[list[CreditTarget]])
async def list_credit_targets(
    current_user: Account = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Accounts the caller may transfer balance with."""
    if current_user.tier == AccountTier.ADMIN:
        query = select(Account).where(Account.tier.in_([AccountTier.DISTRIBUTOR, AccountTier.RESELLER]))
    elif current_user.tier == AccountTier.DISTRIBUTOR:
        query = select(Account).where(
            Account.tier == AccountTier.RESELLER,
            Account.parent_id == current_user.id
        )
    else:
        return ApiResponse(data=[])

    result = await db.execute(query.order_by(Account.name))
    return ApiResponse(data=[CreditTarget.model_validate(a) for a in result.scalars().all()])


@router.post("", response_model=ApiResponse[CreditResponse], status_code=status.HTTP_201_CREATED)
async def create_credit(
    data: CreditCreate,
    request: Request,
    current_user: Account = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Transfer balance with a subordinate account.

    Credit moves the amount from the caller to the target; Debit and
    Reverse Credit move it from the target back to the caller.
    """
    caller_id, caller_name = current_user.id, current_user.name
    record = await ledger.transfer(data.type, data.amount, caller_id, data.target_user_id, caller_id)
    response = _credit_response(record)

    await log_event(
        db=db,
        action=AuditAction.LEDGER_TRANSFER,
        actor_id=caller_id,
        actor_name=caller_name,
        target_account_id=record.target.id,
        target_name=record.target.name,
        metadata={"credit_id": response.id, "type": response.type, "amount": str(data.amount)},
        ip_address=request.client.host if request.client else None
    )

    return ApiResponse(message=f"{response.type} transaction completed successfully", data=response)


@router.post("/self-credit", response_model=ApiResponse[CreditResponse], status_code=status.HTTP_201_CREATED)
async def create_self_credit(
    data: SelfCreditRequest,
    admin: Account = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
    db: AsyncSession = Depends(get_db)
):
    """Add funds to the admin's own balance."""
    admin_id, admin_name = admin.id, admin.name
    record = await ledger.self_credit(data.amount, admin_id)
    response = _credit_response(record)

    await log_event(
        db=db,
        action=AuditAction.LEDGER_SELF_CREDIT,
        actor_id=admin_id,
        actor_name=admin_name,
        target_account_id=admin_id,
        target_name=admin_name,
        metadata={"credit_id": response.id, "amount": str(data.amount)}
    )

    return ApiResponse(message="Self credit added successfully", data=response)


@router.delete("/{credit_id}", response_model=ApiResponse[ReversalResponse])
async def delete_credit(
    credit_id: int = Path(..., description="Credit transaction ID"),
    admin: Account = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Reverse a transaction: undo its balance changes and delete it.

    Capping floors are not checked on reversal.
    """
    admin_id, admin_name = admin.id, admin.name
    result = await ledger.reverse(credit_id, admin_id)
    affected = result.target or result.sender

    await log_event(
        db=db,
        action=AuditAction.LEDGER_REVERSED,
        actor_id=admin_id,
        actor_name=admin_name,
        target_account_id=affected.id if affected else None,
        target_name=affected.name if affected else None,
        metadata={
            "credit_id": credit_id,
            "type": result.entry_type.value,
            "amount": str(result.amount)
        }
    )

    return ApiResponse(
        message="Transaction deleted and balances reversed",
        data=ReversalResponse(
            id=result.entry_id,
            type=result.entry_type.value,
            amount=result.amount,
            sender=_participant(result.sender),
            sender_balance=result.sender_balance,
            target=_participant(result.target),
            target_balance=result.target_balance
        )
    )
