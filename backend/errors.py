"""
Иерархия ошибок сервиса приёма заказов.

У каждой ошибки есть HTTP-статус, с которым отвечает API;
обработчики в main.py отдают их как {"error": message}.
"""
from typing import List, Optional


class PizzeriaError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PizzeriaError):
    """Нет обязательных полей или они некорректны. Повтор не имеет смысла."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])


class PersistenceError(PizzeriaError):
    """Хранилище или транзакция недоступны. Операцию можно повторить целиком."""

    status_code = 500


class AuthVerificationError(PizzeriaError):
    """Токен не прошёл проверку. Создание заказа при этом не прерывается."""

    status_code = 401


class DirectiveParseError(PizzeriaError):
    """Блок действия не разобрался. Наружу из action_blocks не выходит."""

    status_code = 400


class AssistantError(PizzeriaError):
    """Генератор ответов не настроен или недоступен."""

    status_code = 500
