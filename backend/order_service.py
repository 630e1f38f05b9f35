"""
Приём заказов и резерваций.

Порядок для обоих путей одинаковый: проверка обязательных полей,
затем номер из SequenceAllocator и запись заказа в ОДНОЙ транзакции.
Если запись не удалась, откатывается и счётчик, так что номера не
теряются. Повторная отправка того же orderId возвращает уже
сохранённый заказ и новый номер не тратит.
"""
import logging
import math
import os
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
import schemas
from errors import PersistenceError, ValidationError
from sequence import allocator

logger = logging.getLogger(__name__)

DELIVERY_FEE = float(os.getenv("DELIVERY_FEE", "3.00"))

ORDER_REQUIRED_FIELDS = ("details", "cart", "total", "orderId")
RESERVATION_REQUIRED_FIELDS = ("name", "phone", "reservationDate", "reservationTime", "numberOfPeople")
ORDER_ID_MAX_LENGTH = 64


def _missing(data: Dict[str, Any], fields) -> List[str]:
    missing = []
    for field in fields:
        value = data.get(field)
        if value is None or value == "" or value == [] or value == {}:
            missing.append(field)
    return missing


def _describe(exc: PydanticValidationError, prefix: str = "") -> List[str]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{prefix}{location}: {error.get('msg')}")
    return problems


def parse_details(model, data: Any, prefix: str = "details"):
    if not isinstance(data, dict):
        raise ValidationError(f"{prefix} must be an object", [prefix])
    try:
        return model(**data)
    except PydanticValidationError as e:
        problems = _describe(e, f"{prefix}.")
        raise ValidationError("Invalid data: " + "; ".join(problems), problems)


def parse_cart(data: Any) -> List[schemas.CartItem]:
    if not isinstance(data, list) or not data:
        raise ValidationError("cart must be a non-empty list", ["cart"])
    cart = []
    for index, item in enumerate(data):
        cart.append(parse_details(schemas.CartItem, item, f"cart.{index}"))
    return cart


def cart_total(cart: List[schemas.CartItem], details: schemas.OrderDetails) -> float:
    subtotal = sum(item.price * item.quantity for item in cart)
    return round(subtotal + delivery_fee_for(details), 2)


def delivery_fee_for(details: schemas.OrderDetails) -> float:
    if details.orderType != "delivery":
        return 0
    return details.deliveryFee or DELIVERY_FEE


def parse_total(value: Any) -> float:
    try:
        total = float(value)
    except (TypeError, ValueError):
        raise ValidationError("total must be a number", ["total"])
    if not math.isfinite(total):
        raise ValidationError("total must be a finite number", ["total"])
    if total <= 0:
        raise ValidationError("total must be greater than 0", ["total"])
    return round(total, 2)


def parse_order_id(value: Any) -> str:
    order_id = str(value).strip()
    if not order_id:
        raise ValidationError("Incomplete order data, missing: orderId", ["orderId"])
    if len(order_id) > ORDER_ID_MAX_LENGTH:
        raise ValidationError(f"orderId cannot exceed {ORDER_ID_MAX_LENGTH} characters", ["orderId"])
    return order_id


def _find_existing(db: Session, order_id: str) -> Optional[models.Order]:
    try:
        return db.query(models.Order).filter(models.Order.id == order_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not look up order {order_id}: {e}")
        raise PersistenceError("Could not reach the order store") from e


def create_order(db: Session, payload: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
    payload = payload or {}
    missing = _missing(payload, ORDER_REQUIRED_FIELDS)
    if missing:
        raise ValidationError(f"Incomplete order data, missing: {', '.join(missing)}", missing)

    details = parse_details(schemas.OrderDetails, payload["details"])
    cart = parse_cart(payload["cart"])
    total = parse_total(payload["total"])
    order_id = parse_order_id(payload["orderId"])

    existing = _find_existing(db, order_id)
    if existing:
        logger.info(f"Order {order_id} already exists as #{existing.order_number}, returning it")
        return {"orderId": existing.id, "orderNumber": existing.order_number}

    order = models.Order(
        id=order_id,
        user_id=user_id,
        customer_name=details.name,
        customer_phone=details.phone,
        order_type=details.orderType,
        neighborhood=details.neighborhood,
        street=details.street,
        number=details.number,
        complement=details.complement,
        total=total,
        delivery_fee=details.deliveryFee,
        payment_method=details.paymentMethod,
        change_needed=details.changeNeeded,
        change_amount=details.changeAmount,
        notes=details.notes,
        status="pending",
        payment_status="pending",
        items=[
            models.OrderItem(
                product_id=item.productId,
                name=item.name,
                size=item.size,
                price=item.price,
                quantity=item.quantity,
            )
            for item in cart
        ],
    )
    return _persist(db, order)


def create_reservation(db: Session, payload: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
    payload = payload or {}
    details_data = payload.get("details")
    if not isinstance(details_data, dict):
        missing = ["details"]
        raise ValidationError("Incomplete reservation data, missing: details", missing)

    missing = _missing(details_data, RESERVATION_REQUIRED_FIELDS)
    if missing:
        raise ValidationError(f"Incomplete reservation data, missing: {', '.join(missing)}", missing)

    details = parse_details(schemas.ReservationDetails, details_data)

    reservation = models.Order(
        id=uuid.uuid4().hex,
        user_id=user_id,
        customer_name=details.name,
        customer_phone=details.phone,
        order_type="local",
        reservation_date=details.reservationDate,
        reservation_time=details.reservationTime,
        number_of_people=details.numberOfPeople,
        notes=details.notes,
        status="pending",
        payment_status="pending",
    )
    return _persist(db, reservation)


def _persist(db: Session, record: models.Order) -> Dict[str, Any]:
    # до db.add: allocate_next может откатить сессию
    order_number = allocator.allocate_next(db)
    record.order_number = order_number
    record_id = record.id
    kind = record.order_type
    try:
        db.add(record)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # тот же orderId успел сохраниться параллельным запросом
        existing = _find_existing(db, record_id)
        if existing is None:
            logger.error(f"Could not save order {record_id}: {e}")
            raise PersistenceError("Could not save the order") from e
        logger.info(f"Order {record_id} was saved concurrently as #{existing.order_number}")
        return {"orderId": existing.id, "orderNumber": existing.order_number}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not save order {record_id}: {e}")
        raise PersistenceError("Could not save the order") from e

    logger.info(f"Created {kind} record {record_id} as #{order_number}")
    return {"orderId": record_id, "orderNumber": order_number}


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def list_orders(db: Session, status: Optional[str] = None, user_id: Optional[str] = None) -> List[models.Order]:
    query = db.query(models.Order)
    if status:
        query = query.filter(models.Order.status == status)
    if user_id:
        query = query.filter(models.Order.user_id == user_id)
    return query.order_by(models.Order.order_number.desc()).all()


def get_order_response(order: models.Order) -> schemas.OrderResponse:
    return schemas.OrderResponse(
        id=order.id,
        orderNumber=order.order_number,
        userId=order.user_id,
        customer=schemas.CustomerResponse(
            name=order.customer_name,
            phone=order.customer_phone,
            orderType=order.order_type,
            neighborhood=order.neighborhood or "",
            street=order.street or "",
            number=order.number or "",
            complement=order.complement or "",
            reservationDate=order.reservation_date,
            reservationTime=order.reservation_time,
        ),
        items=[
            schemas.OrderItemResponse(
                productId=item.product_id,
                name=item.name,
                size=item.size,
                price=item.price,
                quantity=item.quantity,
            )
            for item in order.items
        ],
        total=order.total,
        deliveryFee=order.delivery_fee or 0,
        numberOfPeople=order.number_of_people,
        paymentMethod=order.payment_method,
        changeNeeded=bool(order.change_needed),
        changeAmount=order.change_amount or "",
        notes=order.notes or "",
        pickupTimeEstimate=order.pickup_time_estimate,
        status=order.status,
        paymentStatus=order.payment_status,
        createdAt=order.created_at,
    )
