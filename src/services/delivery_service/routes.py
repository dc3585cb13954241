from fastapi import APIRouter, Depends, status
from typing import List
from src.services.delivery_service.service import DeliveryService
from src.services.delivery_service.dependencies import get_delivery_service
from src.shared.auth import CurrentCaller
from src.shared.models.delivery_dto import (
    AssignDeliveryRequest,
    CancelForOrderResult,
    DeliveryDetailsDTO,
    DeliveryDTO,
    LocationUpdateResult,
    UpdateDeliveryStatusRequest,
)
from src.shared.models.location_dto import GeoPoint
from src.shared.models.user_dto import DeliveryPersonDTO

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])

@router.get("/personnel/available", response_model=List[DeliveryPersonDTO])
async def get_available_personnel(
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.list_available_personnel(caller)

@router.post("/assign", response_model=DeliveryDTO, status_code=status.HTTP_201_CREATED)
async def assign_delivery(
    request: AssignDeliveryRequest,
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.assign(request, caller)

@router.get("/my-deliveries", response_model=List[DeliveryDTO])
async def get_my_deliveries(
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.get_mine(caller)

@router.patch("/location", response_model=LocationUpdateResult)
async def update_location(
    request: GeoPoint,
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.update_location(caller, request)

@router.get("/order/{order_id}", response_model=DeliveryDetailsDTO)
async def get_delivery_by_order(
    order_id: str,
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.get_by_order(order_id, caller)

@router.post("/order/{order_id}/cancel", response_model=CancelForOrderResult)
async def cancel_delivery_for_order(
    order_id: str,
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.cancel_for_order(order_id, caller)

@router.patch("/{delivery_id}/status", response_model=DeliveryDTO)
async def update_delivery_status(
    delivery_id: str,
    request: UpdateDeliveryStatusRequest,
    caller: CurrentCaller,
    service: DeliveryService = Depends(get_delivery_service)
):
    return await service.update_status(delivery_id, request.status, caller, request.current_location)
