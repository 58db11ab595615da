"""
Base service implementation with common functionality.

Provides lazy OpenAI client creation and shutdown for the completion and
speech services, and maps OpenAI SDK errors onto the ShakBot taxonomy.
"""

import functools
import logging
from abc import ABC
from typing import Any, Callable, Optional, TypeVar

import openai
from openai import AsyncOpenAI

from ..core.config import CompletionConfig
from ..core.exceptions import RateLimitedError, ServiceError, TransientServiceError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def to_service_error(error: openai.OpenAIError, component: str) -> ServiceError:
    """Map an SDK error to RateLimitedError or TransientServiceError."""
    if isinstance(error, openai.RateLimitError):
        return RateLimitedError(str(error), component=component)
    return TransientServiceError(str(error), component=component)


def handle_openai_error(func: F) -> F:
    """Decorator translating OpenAI SDK errors raised by a service coroutine."""

    @functools.wraps(func)
    async def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(self, *args, **kwargs)
        except openai.OpenAIError as e:
            raise to_service_error(e, self.__class__.__name__) from e

    return wrapper  # type: ignore


class BaseService(ABC):
    """Base service owning a lazily created OpenAI client."""

    def __init__(
        self,
        credentials: Optional[CompletionConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize base service.

        Args:
            credentials: Section carrying api_key and base_url
            client: Shared client; created on first use when omitted
        """
        self.credentials = credentials or CompletionConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> AsyncOpenAI:
        """Get the OpenAI client, creating it on first use."""
        if self._client is None:
            # api_key None makes the client read OPENAI_API_KEY
            self._client = AsyncOpenAI(
                api_key=self.credentials.api_key,
                base_url=self.credentials.base_url,
            )
        return self._client

    async def shutdown(self) -> None:
        """Close the client if this service created it."""
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
            logger.info(f"{self.__class__.__name__} closed its client")
