"""Base service infrastructure shared by the account services."""

from abc import ABC
from datetime import datetime, timezone
from typing import Callable

import structlog

from postforge.core.db.repository import AccountRepository

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseService(ABC):
    """
    Abstract base class for service classes.

    Provides repository access, a logger named after the concrete class and
    an injectable clock.

    Example:
        >>> class ProfileService(BaseService):
        ...     async def get(self, user_id: int) -> dict:
        ...         return await self.repository.get_user_by_id(user_id)
    """

    def __init__(
        self,
        repository: AccountRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the service.

        Args:
            repository: AccountRepository for database operations
            clock: Returns the current aware UTC datetime
        """
        self._repository = repository
        self._clock = clock
        self._logger = structlog.get_logger(self.__class__.__name__)

    @property
    def repository(self) -> AccountRepository:
        return self._repository

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return self._logger

    def now(self) -> datetime:
        return self._clock()
