"""
Subscriber API Endpoints.

Subscriber devices, scoped to the caller's place in the hierarchy.
Activation, renewal and paid edits are charged to the owning reseller's balance.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from reseller_backend.app.db.session import get_db
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import SubscriberStatus
from reseller_backend.app.schemas.subscribers import (
    SubscriberCreate, SubscriberActivate, SubscriberUpdate, SubscriberStatusUpdate,
    SubscriberResponse, SubscriberListResponse, ActivationResponse,
    SubscriberBulkUpload, BulkUploadResponse, BulkUploadFailure
)
from reseller_backend.app.schemas.common import ApiResponse
from reseller_backend.app.core.exceptions import ValidationFailedError
from reseller_backend.app.core.dependencies import get_current_user, get_ledger_service
from reseller_backend.app.domain.ledger.ledger_service import LedgerService
from reseller_backend.app.domain.subscriptions.subscription_service import SubscriptionService, ActivationResult

router = APIRouter(prefix="/subscribers", tags=["Subscribers"])


def get_subscription_service(
    db: AsyncSession = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service)
) -> SubscriptionService:
    return SubscriptionService(db, ledger)


def _activation_response(result: ActivationResult) -> ActivationResponse:
    return ActivationResponse(
        subscriber=SubscriberResponse.model_validate(result.subscriber),
        charged_amount=result.charged,
        remaining_balance=result.remaining_balance,
        breakdown=result.breakdown
    )


@router.post("", response_model=ApiResponse[SubscriberResponse], status_code=status.HTTP_201_CREATED)
async def create_subscriber(
    data: SubscriberCreate,
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    subscriber = await service.create(
        current_user,
        name=data.name,
        serial_number=data.serial_number,
        mac_address=data.mac_address,
        reseller_id=data.reseller_id
    )
    return ApiResponse(message="Subscriber created successfully", data=SubscriberResponse.model_validate(subscriber))


@router.post("/bulk-upload", response_model=ApiResponse[BulkUploadResponse])
async def bulk_upload_subscribers(
    data: SubscriberBulkUpload,
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Admin registers many unassigned Fresh devices. Rows that fail are
    reported and skipped.
    """
    result = await service.bulk_register(current_user, [row.model_dump() for row in data.subscribers])
    return ApiResponse(
        message=f"Bulk upload completed. {len(result.created)} successful, {len(result.failed)} failed.",
        data=BulkUploadResponse(
            created=[SubscriberResponse.model_validate(s) for s in result.created],
            failed=[BulkUploadFailure(**failure) for failure in result.failed]
        )
    )


@router.get("", response_model=ApiResponse[SubscriberListResponse])
async def list_subscribers(
    status_filter: Optional[SubscriberStatus] = Query(None, alias="status", description="Filter by status"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    subscribers = await service.list_visible(current_user, status_filter)
    return ApiResponse(data=SubscriberListResponse(
        subscribers=[SubscriberResponse.model_validate(s) for s in subscribers],
        total=len(subscribers)
    ))


@router.get("/{subscriber_id}", response_model=ApiResponse[SubscriberResponse])
async def get_subscriber(
    subscriber_id: int = Path(..., description="Subscriber ID"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    subscriber = await service.get_visible(current_user, subscriber_id)
    return ApiResponse(data=SubscriberResponse.model_validate(subscriber))


@router.post("/{subscriber_id}/activate", response_model=ApiResponse[ActivationResponse])
async def activate_subscriber(
    data: SubscriberActivate,
    subscriber_id: int = Path(..., description="Subscriber ID"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    result = await service.activate(current_user, subscriber_id, data.package_ids, data.primary_package_id)
    return ApiResponse(message="Subscriber activated successfully", data=_activation_response(result))


@router.post("/{subscriber_id}/renew", response_model=ApiResponse[ActivationResponse])
async def renew_subscriber(
    subscriber_id: int = Path(..., description="Subscriber ID"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    result = await service.renew(current_user, subscriber_id)
    return ApiResponse(message="Subscriber renewed successfully", data=_activation_response(result))


@router.put("/{subscriber_id}", response_model=ApiResponse[ActivationResponse])
async def update_subscriber(
    data: SubscriberUpdate,
    subscriber_id: int = Path(..., description="Subscriber ID"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Edit a subscriber. Added packages are charged in full and a later
    expiry pro rata per day; admins are not charged.
    """
    result = await service.update(
        current_user,
        subscriber_id,
        name=data.name,
        serial_number=data.serial_number,
        mac_address=data.mac_address,
        package_ids=data.package_ids,
        expiry_date=data.expiry_date,
        primary_package_id=data.primary_package_id
    )
    message = "Subscriber updated successfully"
    if result.charged:
        message += f". {result.charged} charged to the reseller balance."
    return ApiResponse(message=message, data=_activation_response(result))


@router.patch("/{subscriber_id}/status", response_model=ApiResponse[SubscriberResponse])
async def update_subscriber_status(
    data: SubscriberStatusUpdate,
    subscriber_id: int = Path(..., description="Subscriber ID"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Manually set a subscriber Inactive. Activation goes through /activate."""
    if data.status != SubscriberStatus.INACTIVE:
        raise ValidationFailedError("Status can only be changed to Inactive, use activate or renew instead")
    subscriber = await service.deactivate(current_user, subscriber_id)
    return ApiResponse(message="Subscriber deactivated", data=SubscriberResponse.model_validate(subscriber))


@router.delete("/{subscriber_id}", response_model=ApiResponse[dict])
async def delete_subscriber(
    subscriber_id: int = Path(..., description="Subscriber ID"),
    current_user: Account = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Admins delete the subscriber. Distributors and resellers release it
    back to an unassigned Fresh device.
    """
    deleted = await service.remove(current_user, subscriber_id)
    message = "Subscriber deleted successfully" if deleted else "Subscriber released successfully"
    return ApiResponse(message=message, data={"id": subscriber_id, "deleted": deleted})
