"""
Выдача сквозных номеров заказов и резерваций.

Счётчик живёт отдельной строкой в таблице counters и меняется только
через SequenceAllocator. Блокировок в процессе нет: номер берётся
условным UPDATE ... WHERE value = <прочитанное>, а при конфликте
чтение повторяется.
"""
import logging
import os

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import PersistenceError

logger = logging.getLogger(__name__)

ORDER_COUNTER_KEY = "orderNumber"
MAX_ATTEMPTS = int(os.getenv("SEQUENCE_MAX_ATTEMPTS", "25"))


class SequenceAllocator:
    def __init__(self, key: str = ORDER_COUNTER_KEY, max_attempts: int = MAX_ATTEMPTS):
        self.key = key
        self.max_attempts = max_attempts

    def allocate_next(self, db: Session) -> int:
        """
        Возвращает следующий номер и сдвигает счётчик на единицу.

        Изменение остаётся в текущей транзакции сессии: коммитит вызывающий,
        вместе с записью заказа. Если счётчика ещё нет, он создаётся со
        значением 2, а вызывающему достаётся 1.

        Гонка за вставку (IntegrityError) откатывает сессию целиком, поэтому
        вызывать нужно в начале единицы работы, до добавления своих объектов.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                current = db.execute(
                    select(models.Counter.value).where(models.Counter.key == self.key)
                ).scalar()

                if current is None:
                    db.execute(insert(models.Counter).values(key=self.key, value=2))
                    logger.info(f"Counter '{self.key}' created")
                    return 1

                result = db.execute(
                    update(models.Counter)
                    .where(models.Counter.key == self.key, models.Counter.value == current)
                    .values(value=current + 1)
                )
                if result.rowcount == 1:
                    return current

                logger.debug(f"Counter '{self.key}' moved past {current}, attempt {attempt}/{self.max_attempts}")
            except IntegrityError:
                # другой запрос успел создать счётчик первым
                db.rollback()
                logger.debug(f"Counter '{self.key}' created concurrently, attempt {attempt}/{self.max_attempts}")
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Counter '{self.key}' allocation failed: {e}")
                raise PersistenceError("Could not allocate an order number") from e

        logger.error(f"Counter '{self.key}' still contended after {self.max_attempts} attempts")
        raise PersistenceError("Could not allocate an order number: too much contention")


allocator = SequenceAllocator()
