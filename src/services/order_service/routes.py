from fastapi import APIRouter, Depends, status
from typing import List
from src.services.order_service.service import OrderService
from src.services.order_service.dependencies import get_order_service
from src.shared.auth import CurrentCaller
from src.shared.models.order_dto import CreateOrderRequest, OrderDTO, UpdateOrderStatusRequest
from src.shared.models.enums import OrderStatus

router = APIRouter(prefix="/orders", tags=["Orders"])

@router.post("", response_model=OrderDTO, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.create_order(request, caller)

@router.get("/my-orders", response_model=List[OrderDTO])
async def get_my_orders(
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.get_user_orders(caller.id)

@router.get("/restaurant/{restaurant_id}", response_model=List[OrderDTO])
async def get_restaurant_orders(
    restaurant_id: str,
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.get_restaurant_orders(restaurant_id, caller)

@router.get("/status/{order_status}", response_model=List[OrderDTO])
async def get_orders_by_status(
    order_status: OrderStatus,
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.get_orders_by_status(order_status, caller)

@router.get("/{order_id}", response_model=OrderDTO)
async def get_order(
    order_id: str,
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.get_order(order_id, caller)

@router.patch("/{order_id}/status", response_model=OrderDTO)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.update_status(
        order_id,
        request.status,
        caller,
        request.delivery_person_id,
        request.estimated_delivery_time,
    )

@router.post("/{order_id}/cancel", response_model=OrderDTO)
async def cancel_order(
    order_id: str,
    caller: CurrentCaller,
    service: OrderService = Depends(get_order_service)
):
    return await service.cancel_order(order_id, caller)
