"""
Base service class.

Provides common functionality for all service classes including session management,
logging, post-commit events and helper decorators.
"""

import functools
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings, settings as default_settings
from settlement.services.events import EngineEvent, EventDispatcher, default_dispatcher


# Type variable for generic decorator return types
T = TypeVar("T")

_OUTBOX_KEY = "settlement_outbox"


@dataclass
class ServiceResult:
    """
    Standard service result container.

    Used to return structured results from facade methods.
    """
    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None


class BaseService:
    """
    Base service class.

    Provides common functionality for all service classes:
    - Session management
    - Logging with bound service context
    - Events queued during a unit of work and published after commit
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        """
        Initialize base service.

        Args:
            session: Async database session
            settings: Engine settings (module defaults if omitted)
            events: Event dispatcher (process-wide one if omitted)
        """
        self.session = session
        self.settings = settings or default_settings
        self.events = events or default_dispatcher
        self.logger = logger.bind(service=self.__class__.__name__)

    @property
    def _outbox(self) -> list[EngineEvent]:
        # Shared by every service bound to the same session
        return self.session.info.setdefault(_OUTBOX_KEY, [])

    def emit(self, name: str, **payload: Any) -> None:
        """Queue an event for publication after the next commit."""
        self._outbox.append(EngineEvent(name=str(name), payload=payload))

    async def commit(self) -> None:
        """
        Commit current transaction and publish queued events.

        Raises:
            Exception: If commit fails
        """
        await self.session.commit()
        outbox = self.session.info.pop(_OUTBOX_KEY, [])
        for event in outbox:
            await self.events.publish(event)

    async def rollback(self) -> None:
        """
        Rollback current transaction and drop queued events.

        Raises:
            Exception: If rollback fails
        """
        self.session.info.pop(_OUTBOX_KEY, None)
        await self.session.rollback()


def transaction(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator to wrap method in transaction with automatic commit/rollback.

    Commits on success, rolls back on exception.

    Usage:
        @transaction
        async def my_service_method(self, ...):
            # Your code here
            pass

    Args:
        func: Async method to wrap

    Returns:
        Wrapped async method
    """
    @functools.wraps(func)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Any:
        try:
            result = await func(self, *args, **kwargs)
            await self.commit()
            return result
        except Exception as e:
            await self.rollback()
            self.logger.error(
                f"Transaction failed in {func.__name__}",
                extra={
                    "error": str(e),
                    "function": func.__name__,
                },
            )
            raise

    return wrapper


def log_operation(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator to log method entry/exit with timing.

    Logs:
    - Method entry with arguments
    - Method exit with duration
    - Exceptions if any

    Usage:
        @log_operation
        async def my_service_method(self, user_id: int):
            # Your code here
            pass

    Args:
        func: Async method to wrap

    Returns:
        Wrapped async method
    """
    @functools.wraps(func)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Any:
        start_time = time.time()

        self.logger.info(
            f"Starting {func.__name__}",
            extra={
                "function": func.__name__,
                "args_count": len(args),
                "kwargs_keys": list(kwargs.keys()),
            },
        )

        try:
            result = await func(self, *args, **kwargs)
            duration = time.time() - start_time

            self.logger.info(
                f"Completed {func.__name__}",
                extra={
                    "function": func.__name__,
                    "duration_seconds": round(duration, 3),
                    "success": True,
                },
            )

            return result

        except Exception as e:
            duration = time.time() - start_time

            self.logger.error(
                f"Failed {func.__name__}",
                extra={
                    "function": func.__name__,
                    "duration_seconds": round(duration, 3),
                    "error": str(e),
                    "success": False,
                },
            )

            raise

    return wrapper
