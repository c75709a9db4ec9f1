import logging
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from .errors import Forbidden, NotFound, ValidationError
from .models import Book, Order, OrderItem
from .schemas import OrderCreateIn, OrderItemOut, OrderOut, OrderStatusUpdateIn
from .security import Caller, Capability

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

# order_status lifecycle; cancelled and delivered are terminal
ORDER_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ORDER_TRANSITIONS.items() if not nxt)
CANCELLABLE_STATUSES = tuple(s for s, nxt in ORDER_TRANSITIONS.items() if "cancelled" in nxt)


def can_transition(current: str, new: str) -> bool:
    return new in ORDER_TRANSITIONS.get(current.lower(), set())


def to_order_out(o: Order) -> OrderOut:
    return OrderOut(
        id=o.id,
        user_id=o.user_id,
        username=o.user.username,
        order_date=o.order_date,
        total_amount=float(o.total_amount),
        order_status=o.order_status,
        payment_status=o.payment_status,
        shipping_address=o.shipping_address,
        payment_method=o.payment_method,
        items=[
            OrderItemOut(
                id=i.id,
                book_id=i.book_id,
                book_title=i.book.title,
                book_author=i.book.author,
                quantity=i.quantity,
                unit_price=float(i.unit_price),
                total_price=float(i.total_price),
            )
            for i in o.items
        ],
    )


class OrderService:
    """
    Order placement and the stock bookkeeping around it.

    Stock is reserved eagerly when the order is created and credited back
    when an order is cancelled or deleted. Every operation that touches stock
    commits the order rows and the stock updates in one transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(Order).options(
            joinedload(Order.user),
            selectinload(Order.items).joinedload(OrderItem.book),
        )

    def _get_order(self, order_id: int) -> Order:
        o = self._query().filter(Order.id == order_id).first()
        if not o:
            raise NotFound("Order not found")
        return o

    @staticmethod
    def _check_access(o: Order, caller: Caller) -> None:
        if not caller.can(Capability.VIEW_ALL_ORDERS) and o.user_id != caller.user_id:
            raise Forbidden("Not allowed to access this order")

    def _reserve_stock(self, book: Book, quantity: int) -> None:
        """
        Decrement stock only if enough is left at write time. The guarded
        UPDATE closes the window between the validation pass and the write
        when another order for the same book commits in between.
        """
        result = self.db.execute(
            update(Book)
            .where(Book.id == book.id, Book.stock_quantity >= quantity)
            .values(stock_quantity=Book.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = self.db.scalar(select(Book.stock_quantity).where(Book.id == book.id))
            logger.warning(
                "stock reservation rejected book_id=%s available=%s requested=%s",
                book.id, available, quantity,
            )
            raise ValidationError(
                f"Insufficient stock for book '{book.title}'. "
                f"Available: {available}, Requested: {quantity}"
            )

    def _restore_stock(self, o: Order) -> None:
        # Shared by cancel and delete so both credit exactly what was reserved
        for item in o.items:
            self.db.execute(
                update(Book)
                .where(Book.id == item.book_id)
                .values(stock_quantity=Book.stock_quantity + item.quantity)
                .execution_options(synchronize_session=False)
            )

    def create_order(self, caller: Caller, payload: OrderCreateIn) -> OrderOut:
        book_ids = [it.book_id for it in payload.items]

        try:
            books = {
                b.id: b
                for b in self.db.query(Book).filter(Book.id.in_(book_ids)).all()
            }
            # Duplicate ids in the request also land here (resolved < requested)
            if len(books) != len(book_ids):
                raise ValidationError("One or more books not found")

            # Validate every line before touching any stock
            for it in payload.items:
                book = books[it.book_id]
                if book.stock_quantity < it.quantity:
                    raise ValidationError(
                        f"Insufficient stock for book '{book.title}'. "
                        f"Available: {book.stock_quantity}, Requested: {it.quantity}"
                    )

            order = Order(
                user_id=caller.user_id,
                shipping_address=payload.shipping_address,
                payment_method=payload.payment_method,
                order_status="pending",
                payment_status="pending",
            )

            total = Decimal("0.00")
            for it in payload.items:
                book = books[it.book_id]
                unit_price = book.price
                line_total = unit_price * it.quantity
                order.items.append(
                    OrderItem(
                        book_id=book.id,
                        quantity=it.quantity,
                        unit_price=unit_price,
                        total_price=line_total,
                    )
                )
                total += line_total
            order.total_amount = total
            self.db.add(order)

            for it in payload.items:
                self._reserve_stock(books[it.book_id], it.quantity)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "created order id=%s user_id=%s items=%s total=%s",
            order.id, caller.user_id, len(book_ids), total,
        )
        return to_order_out(self._get_order(order.id))

    def list_orders(self, caller: Caller, status: str | None = None) -> list[OrderOut]:
        q = self._query()
        if not caller.can(Capability.VIEW_ALL_ORDERS):
            q = q.filter(Order.user_id == caller.user_id)
        if status:
            q = q.filter(func.lower(Order.order_status) == status.lower())
        rows = q.order_by(Order.order_date.desc(), Order.id.desc()).all()
        return [to_order_out(o) for o in rows]

    def list_my_orders(self, caller: Caller) -> list[OrderOut]:
        rows = (
            self._query()
            .filter(Order.user_id == caller.user_id)
            .order_by(Order.order_date.desc(), Order.id.desc())
            .all()
        )
        return [to_order_out(o) for o in rows]

    def get_order(self, order_id: int, caller: Caller) -> OrderOut:
        o = self._get_order(order_id)
        self._check_access(o, caller)
        return to_order_out(o)

    def update_order_status(self, order_id: int, payload: OrderStatusUpdateIn) -> Order:
        """
        Admin override of either status field. Any non-terminal order may be
        moved to any known status, but a cancelled or delivered order keeps
        its order_status: reopening a cancelled order would let a second
        cancel/delete credit its stock again. payment_status stays editable
        (e.g. refunded after a cancellation).
        """
        o = self._get_order(order_id)

        # Empty strings count as "not provided"
        order_status = (payload.order_status or "").lower()
        payment_status = (payload.payment_status or "").lower()

        if order_status and order_status not in ORDER_STATUSES:
            raise ValidationError("Invalid order status")
        if payment_status and payment_status not in PAYMENT_STATUSES:
            raise ValidationError("Invalid payment status")
        if order_status and o.order_status in TERMINAL_STATUSES and order_status != o.order_status:
            raise ValidationError(f"Order is {o.order_status} and its status can no longer change")

        if order_status:
            o.order_status = order_status
        if payment_status:
            o.payment_status = payment_status
        self.db.commit()

        logger.info(
            "updated order id=%s order_status=%s payment_status=%s",
            o.id, o.order_status, o.payment_status,
        )
        return o

    def cancel_order(self, order_id: int, caller: Caller) -> Order:
        o = self._get_order(order_id)
        self._check_access(o, caller)

        if not can_transition(o.order_status, "cancelled"):
            raise ValidationError("Order cannot be cancelled at this stage")

        try:
            # The status flip is the guard: a concurrent cancel/delete that
            # already moved the order leaves nothing to update here, so the
            # stock is credited at most once.
            result = self.db.execute(
                update(Order)
                .where(Order.id == o.id, Order.order_status.in_(CANCELLABLE_STATUSES))
                .values(order_status="cancelled")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValidationError("Order cannot be cancelled at this stage")

            self._restore_stock(o)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("cancelled order id=%s by user_id=%s", o.id, caller.user_id)
        return o

    def delete_order(self, order_id: int) -> None:
        o = self._get_order(order_id)

        if o.order_status.lower() != "pending":
            raise ValidationError("Only pending orders can be deleted")

        try:
            # Same guard as cancel: only the request that removes the
            # still-pending row goes on to credit stock
            result = self.db.execute(
                delete(Order)
                .where(Order.id == o.id, Order.order_status == "pending")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValidationError("Only pending orders can be deleted")

            self.db.execute(
                delete(OrderItem)
                .where(OrderItem.order_id == o.id)
                .execution_options(synchronize_session=False)
            )
            self._restore_stock(o)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        # The rows are gone; drop the stale instances (items cascade)
        self.db.expunge(o)
        logger.info("deleted order id=%s", order_id)
