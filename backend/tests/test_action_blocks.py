import json

import pytest

import action_blocks
from action_blocks import (
    CREATE_ORDER,
    CREATE_RESERVATION,
    CreateOrderAction,
    CreateReservationAction,
    build_action,
    extract_action,
)
from errors import DirectiveParseError


ORDER_BLOCK = {
    "details": {"name": "Ana", "phone": "27999999999", "orderType": "pickup"},
    "cart": [{"productId": "p1", "name": "Margherita", "size": "M", "price": 45.0, "quantity": 2}],
}

RESERVATION_BLOCK = {
    "details": {
        "name": "Bruno",
        "phone": "27988887777",
        "reservationDate": "2025-11-20",
        "reservationTime": "20:30",
        "numberOfPeople": 4,
    }
}


def order_directive(data=None) -> str:
    return f"<ACTION_CREATE_ORDER>{json.dumps(data or ORDER_BLOCK)}</ACTION_CREATE_ORDER>"


def reservation_directive(data=None) -> str:
    return f"<ACTION_CREATE_RESERVATION>{json.dumps(data or RESERVATION_BLOCK)}</ACTION_CREATE_RESERVATION>"


def test_order_block_is_extracted_and_stripped():
    """Текст до маркера показывается как есть, блок превращается в действие."""
    result = extract_action("Here is your summary.\n" + order_directive())

    assert result.text == "Here is your summary."
    assert isinstance(result.action, CreateOrderAction)
    assert len(result.action.cart) == 1
    assert result.action.cart[0].quantity == 2
    assert result.action.details.orderType == "pickup"
    assert result.action.details.paymentMethod is None


def test_reservation_block_is_extracted():
    result = extract_action("All set!\n" + reservation_directive())

    assert result.text == "All set!"
    assert isinstance(result.action, CreateReservationAction)
    assert result.action.details.numberOfPeople == 4
    assert result.action.details.reservationTime == "20:30"


def test_reply_without_directive_is_returned_unchanged():
    result = extract_action("  Our pizzas are baked in a wood oven.  ")

    assert result.text == "Our pizzas are baked in a wood oven."
    assert result.action is None


@pytest.mark.parametrize("reply", [None, ""])
def test_empty_reply(reply):
    result = extract_action(reply)
    assert result.text == ""
    assert result.action is None


def test_malformed_json_yields_no_action():
    """Битый JSON не ломает ответ: действия нет, текст показывается."""
    result = extract_action("Almost done\n<ACTION_CREATE_ORDER>{not valid json}</ACTION_CREATE_ORDER>")

    assert result.action is None
    assert result.text == "Almost done"


def test_missing_closing_marker_yields_no_action():
    reply = "Almost done\n<ACTION_CREATE_ORDER>" + json.dumps(ORDER_BLOCK)

    result = extract_action(reply)

    assert result.action is None
    assert result.text == "Almost done"
    assert "ACTION_CREATE_ORDER" not in result.text


def test_schema_mismatch_yields_no_action():
    block = json.loads(json.dumps(ORDER_BLOCK))
    block["cart"][0]["quantity"] = "two"

    result = extract_action("Summary\n" + order_directive(block))

    assert result.action is None
    assert result.text == "Summary"


@pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_price_yields_no_action(token):
    """json.loads принимает NaN и Infinity, но такой блок заказ не создаёт."""
    reply = "Ok.\n" + order_directive().replace('"price": 45.0', f'"price": {token}')

    result = extract_action(reply)

    assert token in reply
    assert result.action is None
    assert result.text == "Ok."


def test_empty_cart_yields_no_action():
    block = {"details": ORDER_BLOCK["details"], "cart": []}

    assert extract_action(order_directive(block)).action is None


def test_json_array_payload_yields_no_action():
    reply = "<ACTION_CREATE_ORDER>[1, 2, 3]</ACTION_CREATE_ORDER>"

    assert extract_action(reply).action is None


def test_numeric_strings_are_coerced():
    block = json.loads(json.dumps(RESERVATION_BLOCK))
    block["details"]["numberOfPeople"] = "4"
    block["details"]["phone"] = 27988887777

    result = extract_action(reservation_directive(block))

    assert result.action.details.numberOfPeople == 4
    assert result.action.details.phone == "27988887777"


def test_first_block_wins_when_repeated():
    second = json.loads(json.dumps(ORDER_BLOCK))
    second["cart"][0]["quantity"] = 5
    reply = "Summary\n" + order_directive() + "\n" + order_directive(second)

    result = extract_action(reply)

    assert result.action.cart[0].quantity == 2


def test_earliest_directive_kind_wins():
    reply = "Text\n" + reservation_directive() + order_directive()

    result = extract_action(reply)

    assert isinstance(result.action, CreateReservationAction)
    assert result.text == "Text"


def test_code_fences_and_backticks_are_tolerated():
    reply = (
        "Here you go:\n```\n<ACTION_CREATE_ORDER>```json\n"
        + json.dumps(ORDER_BLOCK)
        + "\n```</ACTION_CREATE_ORDER>\n```"
    )

    result = extract_action(reply)

    assert isinstance(result.action, CreateOrderAction)
    assert result.text == "Here you go:"


def test_to_payload_shapes():
    order = extract_action(order_directive()).action.to_payload()
    assert order["type"] == CREATE_ORDER
    assert order["cart"][0]["productId"] == "p1"
    assert order["details"]["name"] == "Ana"

    reservation = extract_action(reservation_directive()).action.to_payload()
    assert reservation["type"] == CREATE_RESERVATION
    assert reservation["cart"] is None


def test_build_action_rejects_unknown_kind():
    with pytest.raises(DirectiveParseError):
        build_action("create_invoice", {"details": {}})


def test_build_action_reports_schema_errors():
    with pytest.raises(DirectiveParseError) as exc_info:
        build_action(CREATE_RESERVATION, {"details": {"name": "Bruno"}})
    assert exc_info.value.status_code == 400


def test_sentinels_cover_both_kinds():
    assert set(action_blocks.SENTINELS) == {CREATE_ORDER, CREATE_RESERVATION}
