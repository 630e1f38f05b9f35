"""
Разбор блоков действий в ответах ассистента.

Ассистент дописывает к обычному тексту JSON между маркерами:

    <ACTION_CREATE_ORDER>{"details": {...}, "cart": [...]}</ACTION_CREATE_ORDER>
    <ACTION_CREATE_RESERVATION>{"details": {...}}</ACTION_CREATE_RESERVATION>

extract_action() отдаёт текст для показа (всё до открывающего маркера) и
проверенное действие либо None. Битый или неполный блок молча
отбрасывается: пользователю он не показывается и заказ не создаёт.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import schemas
from errors import DirectiveParseError, ValidationError
from order_service import parse_cart, parse_details

logger = logging.getLogger(__name__)

CREATE_ORDER = "create_order"
CREATE_RESERVATION = "create_reservation"

SENTINELS = {
    CREATE_ORDER: ("<ACTION_CREATE_ORDER>", "</ACTION_CREATE_ORDER>"),
    CREATE_RESERVATION: ("<ACTION_CREATE_RESERVATION>", "</ACTION_CREATE_RESERVATION>"),
}


@dataclass
class CreateOrderAction:
    details: schemas.OrderDetails
    cart: List[schemas.CartItem]

    type = CREATE_ORDER

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "details": self.details.dict(),
            "cart": [item.dict() for item in self.cart],
        }


@dataclass
class CreateReservationAction:
    details: schemas.ReservationDetails

    type = CREATE_RESERVATION

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "details": self.details.dict(), "cart": None}


Action = Union[CreateOrderAction, CreateReservationAction]


@dataclass
class ExtractedReply:
    text: str
    action: Optional[Action] = None


def _visible(text: str) -> str:
    # ассистент любит оборачивать блок в обратные кавычки
    return text.rstrip().rstrip("`").strip()


def _first_directive(reply: str):
    found = None
    for kind, (opening, _) in SENTINELS.items():
        index = reply.find(opening)
        if index != -1 and (found is None or index < found[1]):
            found = (kind, index)
    return found


def _strip_fences(payload: str) -> str:
    payload = payload.strip()
    if payload.startswith("```"):
        payload = payload[3:]
        if payload.lower().startswith("json"):
            payload = payload[4:]
        if payload.endswith("```"):
            payload = payload[:-3]
    return payload.strip().strip("`").strip()


def decode_payload(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(_strip_fences(raw))
    except ValueError as e:
        raise DirectiveParseError(f"Action block is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise DirectiveParseError("Action block must be a JSON object")
    return data


def build_action(kind: str, data: Dict[str, Any]) -> Action:
    """Проверяет полезную нагрузку блока и собирает типизированное действие."""
    try:
        if kind == CREATE_ORDER:
            details = parse_details(schemas.OrderDetails, data.get("details"))
            cart = parse_cart(data.get("cart"))
            return CreateOrderAction(details=details, cart=cart)
        if kind == CREATE_RESERVATION:
            details = parse_details(schemas.ReservationDetails, data.get("details"))
            return CreateReservationAction(details=details)
    except ValidationError as e:
        raise DirectiveParseError(f"Action block does not match the {kind} schema: {e.message}")
    raise DirectiveParseError(f"Unknown action type: {kind}")


def extract_action(reply: Optional[str]) -> ExtractedReply:
    reply = reply or ""
    found = _first_directive(reply)
    if found is None:
        return ExtractedReply(text=reply.strip())

    kind, start = found
    opening, closing = SENTINELS[kind]
    visible = _visible(reply[:start])

    body_start = start + len(opening)
    end = reply.find(closing, body_start)
    if end == -1:
        logger.info(f"Discarding {kind} block without a closing marker")
        return ExtractedReply(text=visible)

    try:
        action = build_action(kind, decode_payload(reply[body_start:end]))
    except DirectiveParseError as e:
        logger.info(f"Discarding {kind} block: {e.message}")
        return ExtractedReply(text=visible)

    return ExtractedReply(text=visible, action=action)
