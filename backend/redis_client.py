"""
Модуль для работы с Redis: кеширование заказов и rate limiting
"""
import os
import json
import logging
import redis
from typing import Optional, Dict, Any, Tuple
from functools import wraps
from fastapi import HTTPException, status
import time

logger = logging.getLogger(__name__)


class RedisClient:
    """Класс для работы с Redis"""

    def __init__(self):
        """Инициализация подключения к Redis"""
        self.redis_host = os.getenv("REDIS_HOST", "redis")
        redis_port_env = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
        self.redis_port = int(str(redis_port_env).split(":")[-1])
        self.client = None

        # Пустой REDIS_HOST выключает кеш (локальный запуск, тесты)
        if not self.redis_host:
            return

        try:
            self.client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            # Проверяем подключение
            self.client.ping()
        except Exception as e:
            logger.warning(f"Could not connect to Redis: {e}")
            self.client = None

    def is_available(self) -> bool:
        """Проверка доступности Redis"""
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Кеширование заказов ==========

    def cache_order(self, order_id: str, order_data: Dict, ttl: int = 180) -> bool:
        """Кеширует данные конкретного заказа"""
        if not self.is_available():
            return False
        try:
            order_json = json.dumps(order_data, default=str)
            self.client.setex(f"order:{order_id}", ttl, order_json)
            return True
        except Exception as e:
            logger.warning(f"Could not cache order {order_id}: {e}")
            return False

    def get_cached_order(self, order_id: str) -> Optional[Dict]:
        """Получает данные заказа из кеша"""
        if not self.is_available():
            return None
        try:
            cached = self.client.get(f"order:{order_id}")
            if cached:
                return json.loads(cached)
        except Exception as e:
            logger.warning(f"Could not read order {order_id} from cache: {e}")
        return None

    def invalidate_order_cache(self, order_id: str) -> bool:
        """Удаляет кеш конкретного заказа"""
        if not self.is_available():
            return False
        try:
            self.client.delete(f"order:{order_id}")
            return True
        except Exception as e:
            logger.warning(f"Could not invalidate cached order {order_id}: {e}")
            return False

    # ========== Rate Limiting ==========

    def check_rate_limit(self, key: str, max_requests: int = 10, window: int = 60) -> Tuple[bool, int]:
        """
        Проверяет rate limit для ключа
        Возвращает (разрешено, оставшееся количество запросов)
        """
        if not self.is_available():
            return True, max_requests  # Если Redis недоступен, разрешаем запрос

        try:
            current = self.client.incr(key)
            if current == 1:
                # Первый запрос в окне - устанавливаем TTL
                self.client.expire(key, window)

            remaining = max(0, max_requests - current)
            allowed = current <= max_requests

            return allowed, remaining
        except Exception as e:
            logger.warning(f"Rate limit check failed: {e}")
            return True, max_requests  # При ошибке разрешаем запрос

    # ========== Утилиты ==========

    def clear_all_cache(self) -> bool:
        """Очищает кеш заказов и счётчики rate limit"""
        if not self.is_available():
            return False
        try:
            # Удаляем только наши ключи, не трогая системные
            patterns = ["order:*", "rate_limit:*"]
            for pattern in patterns:
                keys = self.client.keys(pattern)
                if keys:
                    self.client.delete(*keys)
            return True
        except Exception as e:
            logger.warning(f"Could not clear cache: {e}")
            return False

    def get_cache_info(self) -> Dict[str, Any]:
        """Возвращает информацию о кеше"""
        if not self.is_available():
            return {"status": "unavailable"}

        try:
            info = {
                "status": "available",
                "cached_orders_count": len(self.client.keys("order:*")),
                "rate_limit_keys_count": len(self.client.keys("rate_limit:*"))
            }
            return info
        except Exception as e:
            return {"status": "error", "error": str(e)}


# Глобальный экземпляр клиента Redis
redis_client = RedisClient()


# ========== Декораторы для rate limiting ==========

def rate_limit(max_requests: int = 10, window: int = 60, key_prefix: str = "rate_limit"):
    """
    Декоратор для rate limiting
    max_requests: максимальное количество запросов
    window: окно времени в секундах
    key_prefix: префикс для ключа в Redis
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Пытаемся получить request из kwargs (FastAPI)
            request = kwargs.get('request') or (args[0] if args and hasattr(args[0], 'client') else None)

            # Формируем ключ для rate limiting
            if request is not None and getattr(request, 'client', None) is not None:
                client_host = getattr(request.client, 'host', None) or "unknown"
                rate_key = f"{key_prefix}:{func.__name__}:{client_host}"
            else:
                rate_key = f"{key_prefix}:{func.__name__}:global"

            allowed, remaining = redis_client.check_rate_limit(rate_key, max_requests, window)

            if not allowed:
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"Rate limit exceeded. Try again in {window} seconds."
                )

            # Добавляем заголовок с информацией о rate limit
            response = await func(*args, **kwargs)
            if hasattr(response, 'headers'):
                response.headers["X-RateLimit-Limit"] = str(max_requests)
                response.headers["X-RateLimit-Remaining"] = str(remaining)
                response.headers["X-RateLimit-Reset"] = str(int(time.time()) + window)

            return response
        return wrapper
    return decorator
