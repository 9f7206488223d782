from fastapi import APIRouter, Depends
from sqlmodel import Session

from resell_core.database import get_session
from resell_core.dependencies.integrations import get_notifier
from resell_core.schemas.checkout_schemas import (
    AddCartItemRequest,
    OrderResponse,
    PlaceOrderRequest,
)
from resell_core.services import cart_service, order_service

router = APIRouter()


@router.post("/cart/items")
def add_to_cart(payload: AddCartItemRequest, session: Session = Depends(get_session)):
    item = cart_service.add_item(
        session,
        user_id=payload.user_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        resell_price=payload.resell_price,
        reseller_id=payload.reseller_id,
    )
    return {"success": True, "item_id": item.id, "quantity": item.quantity}


@router.get("/cart/{user_id}")
def get_cart(user_id: int, session: Session = Depends(get_session)):
    items = cart_service.get_cart(session, user_id)
    return {
        "success": True,
        "items": [
            {
                "id": i.id,
                "product_id": i.product_id,
                "quantity": i.quantity,
                "resell_price": str(i.resell_price),
                "reseller_id": i.reseller_id,
            }
            for i in items
        ],
    }


@router.delete("/cart/{user_id}/items/{item_id}")
def remove_from_cart(user_id: int, item_id: int, session: Session = Depends(get_session)):
    cart_service.remove_item(session, user_id=user_id, item_id=item_id)
    return {"success": True}


@router.post("/orders", status_code=201)
def place_order(
    payload: PlaceOrderRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    order = order_service.place_order(
        session,
        user_id=payload.user_id,
        payment_method=payload.payment_method,
        shipping_address=payload.shipping_address.model_dump(),
        items=[line.model_dump() for line in payload.items] if payload.items is not None else None,
        notifier=notifier,
    )
    return {
        "success": True,
        "message": "Order placed successfully",
        "order": OrderResponse.model_validate(order),
    }
