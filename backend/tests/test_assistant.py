from unittest.mock import MagicMock

import pytest
import requests

import assistant
from errors import AssistantError


MENU = {
    "categories": [{"id": "pizzas", "name": "Pizzas"}, {"id": "empty", "name": "Empty"}],
    "products": [
        {
            "id": "p1",
            "name": "Margherita",
            "categoryId": "pizzas",
            "description": "Tomato and basil",
            "prices": {"M": 45.0, "G": 55.0},
            "isPromotion": True,
            "promotionalPrices": {"M": 39.9},
        },
        {
            "id": "p2",
            "name": "Calabresa",
            "categoryId": "pizzas",
            "prices": {"M": 48.0},
            "stockStatus": "out_of_stock",
        },
    ],
}


def session_returning(body):
    response = MagicMock()
    response.json.return_value = body
    session = MagicMock()
    session.post.return_value = response
    return session


def test_menu_prompt_marks_promotions_and_stock():
    prompt = assistant.generate_menu_prompt(MENU)

    assert "**PIZZAS**" in prompt
    assert "EMPTY" not in prompt
    assert "M from R$45.00 to **R$39.90**" in prompt
    assert "G R$55.00" in prompt
    assert "Calabresa (id: 'p2') (OUT OF STOCK)" in prompt


def test_menu_prompt_without_menu():
    assert assistant.generate_menu_prompt(None) == "MENU IS CURRENTLY UNAVAILABLE."
    assert assistant.generate_menu_prompt({"categories": [], "products": []}) == "MENU IS CURRENTLY UNAVAILABLE."


def test_system_instruction_reports_closed_store():
    instruction = assistant.build_system_instruction(MENU, {"isOnline": False})

    assert "**Closed**" in instruction
    assert "<ACTION_CREATE_ORDER>" in instruction


def test_generate_reply_sends_history_and_joins_parts():
    session = session_returning({
        "candidates": [{"content": {"parts": [{"text": "Hello, "}, {"text": "welcome!"}]}}],
    })
    client = assistant.AssistantClient(api_key="key", model="gemini-test", session=session)

    reply = client.generate_reply(
        [{"role": "user", "content": "Hi"}, {"role": "bot", "content": "Hello"}, {"role": "user", "content": "Menu?"}],
        MENU,
        {"isOnline": True},
    )

    assert reply == "Hello, welcome!"
    url = session.post.call_args[0][0]
    kwargs = session.post.call_args[1]
    assert "gemini-test:generateContent" in url
    assert kwargs["params"] == {"key": "key"}
    assert [c["role"] for c in kwargs["json"]["contents"]] == ["user", "model", "user"]
    assert "Margherita" in kwargs["json"]["systemInstruction"]["parts"][0]["text"]


def test_generate_reply_without_key():
    client = assistant.AssistantClient(api_key="", session=MagicMock())

    with pytest.raises(AssistantError) as exc_info:
        client.generate_reply([{"role": "user", "content": "Hi"}])
    assert "API key" in exc_info.value.message


def test_generate_reply_request_failure():
    session = MagicMock()
    session.post.side_effect = requests.Timeout("timed out")
    client = assistant.AssistantClient(api_key="key", session=session)

    with pytest.raises(AssistantError):
        client.generate_reply([{"role": "user", "content": "Hi"}])


def test_generate_reply_unexpected_body():
    client = assistant.AssistantClient(api_key="key", session=session_returning({"candidates": []}))

    with pytest.raises(AssistantError):
        client.generate_reply([{"role": "user", "content": "Hi"}])
