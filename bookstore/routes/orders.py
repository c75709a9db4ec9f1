from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..events import publish
from ..order_service import OrderService
from ..schemas import MessageOut, OrderCreateIn, OrderOut, OrderStatusUpdateIn
from ..security import Caller, require_order_admin, require_user

router = APIRouter()


@router.get("", response_model=list[OrderOut])
def list_orders(status: str | None = None, caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    return OrderService(db).list_orders(caller, status=status)


# Declared before /{order_id} so "my-orders" is not parsed as an id
@router.get("/my-orders", response_model=list[OrderOut])
def my_orders(caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    return OrderService(db).list_my_orders(caller)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    return OrderService(db).get_order(order_id, caller)


@router.post("", response_model=OrderOut, status_code=201)
def create_order(payload: OrderCreateIn, caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    order = OrderService(db).create_order(caller, payload)
    publish(
        "order.created",
        {
            "order_id": order.id,
            "user_id": order.user_id,
            "email": caller.email,
            "total": order.total_amount,
        },
        safe=True,
    )
    return order


@router.put("/{order_id}/status", response_model=MessageOut)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdateIn,
    _: Caller = Depends(require_order_admin),
    db: Session = Depends(get_db),
):
    order = OrderService(db).update_order_status(order_id, payload)
    publish(
        "order.status_updated",
        {
            "order_id": order.id,
            "order_status": order.order_status,
            "payment_status": order.payment_status,
        },
        safe=True,
    )
    return MessageOut(message="Order status updated successfully", order_id=order.id)


@router.delete("/{order_id}", response_model=MessageOut)
def delete_order(order_id: int, _: Caller = Depends(require_order_admin), db: Session = Depends(get_db)):
    OrderService(db).delete_order(order_id)
    publish("order.deleted", {"order_id": order_id}, safe=True)
    return MessageOut(message="Order deleted successfully", order_id=order_id)


@router.post("/{order_id}/cancel", response_model=MessageOut)
def cancel_order(order_id: int, caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    order = OrderService(db).cancel_order(order_id, caller)
    publish("order.cancelled", {"order_id": order.id, "user_id": order.user_id}, safe=True)
    return MessageOut(message="Order cancelled successfully", order_id=order.id)
