"""Errors raised by the messaging services.

Routers never see SQLAlchemy exceptions directly: store failures surface as
``StoreError`` and are mapped to a 503 in ``app.main``.
"""

import functools
import logging

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MessagingError):
    """Empty content or missing identifiers."""


class InvalidOperation(MessagingError):
    """Operation that can never succeed, such as messaging yourself."""


class StoreError(MessagingError):
    """Transient failure talking to the database."""
    status_code = 503


def store_operation(func):
    """Roll back and re-raise database failures from a service method as StoreError.

    The wrapped method must belong to an object exposing its session as ``self.db``.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception(f"Store failure in {func.__qualname__}")
            await self.db.rollback()
            raise StoreError("Database temporarily unavailable") from e

    return wrapper
