"""
Клиент ассистента пиццерии.

Генерация текста делегирована Gemini (REST generateContent). Модуль
только собирает системную инструкцию из меню и статуса магазина,
отправляет историю диалога и возвращает сырой ответ. Блоки действий
разбирает action_blocks.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from errors import AssistantError

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
REQUEST_TIMEOUT = 60

ACTION_RULES = """When the customer has given every detail of an order (name, items with size,
phone, delivery or pickup, address for delivery, payment method, change for cash),
end your message with a summary and then exactly one block:
<ACTION_CREATE_ORDER>
{"details": {"name": "", "phone": "", "orderType": "delivery|pickup", "neighborhood": "",
 "street": "", "number": "", "complement": "", "paymentMethod": "credit|debit|pix|cash",
 "changeNeeded": false, "changeAmount": "", "notes": ""},
 "cart": [{"productId": "", "name": "", "size": "", "price": 0.0, "quantity": 1}]}
</ACTION_CREATE_ORDER>
For a table reservation (name, phone, number of people, date, time) end with:
<ACTION_CREATE_RESERVATION>
{"details": {"name": "", "phone": "", "numberOfPeople": 2,
 "reservationDate": "YYYY-MM-DD", "reservationTime": "HH:MM", "notes": ""}}
</ACTION_CREATE_RESERVATION>
Never emit a block before all data is collected. Orders may only be created while the store is open.
Use the promotional price when it exists and never offer out-of-stock products."""


def generate_menu_prompt(menu_data: Optional[Dict[str, Any]]) -> str:
    if not menu_data or not menu_data.get("categories") or not menu_data.get("products"):
        return "MENU IS CURRENTLY UNAVAILABLE."

    lines = ["CURRENT MENU AND PRICES (use only this menu for products, prices and orders):", ""]
    for category in menu_data["categories"]:
        products = [p for p in menu_data["products"] if p.get("categoryId") == category.get("id")]
        if not products:
            continue
        lines.append(f"**{str(category.get('name', '')).upper()}**")
        for product in products:
            availability = " (OUT OF STOCK)" if product.get("stockStatus") == "out_of_stock" else ""
            lines.append(f"- **{product.get('name')} (id: '{product.get('id')}'){availability}:** {product.get('description', '')}")

            prices = product.get("prices") or {}
            promo_prices = product.get("promotionalPrices") or {}
            on_promotion = bool(product.get("isPromotion")) and bool(promo_prices)
            price_strings = []
            for size, regular in prices.items():
                promo = promo_prices.get(size) if on_promotion else None
                if promo and promo > 0:
                    price_strings.append(f"{size} from R${regular:.2f} to **R${promo:.2f}**")
                else:
                    price_strings.append(f"{size} R${regular:.2f}")
            if price_strings:
                lines.append(f"  - Prices: {' | '.join(price_strings)}")
        lines.append("")
    return "\n".join(lines)


def build_system_instruction(menu_data: Optional[Dict[str, Any]], store_status: Optional[Dict[str, Any]]) -> str:
    is_online = (store_status or {}).get("isOnline", True)
    status_text = "Open" if is_online else "Closed"
    return "\n\n".join([
        generate_menu_prompt(menu_data),
        f"Store status (source of truth): **{status_text}**",
        ACTION_RULES,
    ])


class AssistantClient:
    """Клиент Gemini generateContent."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, session=None):
        self.api_key = api_key if api_key is not None else GEMINI_API_KEY
        self.model = model or GEMINI_MODEL
        self.session = session or requests.Session()

    def generate_reply(
        self,
        history: List[Dict[str, str]],
        menu_data: Optional[Dict[str, Any]] = None,
        store_status: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not self.api_key:
            logger.error("GEMINI_API_KEY not set")
            raise AssistantError("Configuration error: Assistant API key is missing.")
        if not history:
            raise AssistantError("No conversation history provided")

        payload = {
            "systemInstruction": {"parts": [{"text": build_system_instruction(menu_data, store_status)}]},
            "contents": [
                {
                    "role": "model" if message["role"] == "bot" else "user",
                    "parts": [{"text": message["content"]}],
                }
                for message in history
            ],
            "generationConfig": {"temperature": 0.4},
        }

        try:
            response = self.session.post(
                GEMINI_API_URL.format(model=self.model),
                params={"key": self.api_key},
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Assistant request failed: {e}")
            raise AssistantError("Failed to get response from assistant") from e
        except ValueError as e:
            logger.error(f"Assistant returned a non-JSON body: {e}")
            raise AssistantError("Failed to get response from assistant") from e

        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected assistant response structure: {data}")
            raise AssistantError("Failed to get response from assistant") from e

        return "".join(part.get("text", "") for part in parts).strip()


assistant_client = AssistantClient()
