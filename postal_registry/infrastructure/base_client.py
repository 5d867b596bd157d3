"""Base class for async HTTP clients talking to the registry source."""

import logging
from typing import Dict, Optional

import httpx

from ..application.exceptions import ConfigurationError

from .decorators import BackoffPolicy


class BaseClient:
    """
    A base client that holds an async client, the request defaults the
    source expects, and the retry policy for its network calls.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str,
        timeout: float,
        retry_policy: Optional[BackoffPolicy] = None,
    ):
        """
        Initializes the base client.

        Args:
            client: An instance of httpx.AsyncClient.
            user_agent: The User-Agent header sent with every request.
            timeout: Per-request timeout in seconds.
            retry_policy: Backoff policy for transient failures.

        Raises:
            ConfigurationError: If the timeout is not a positive number.
        """

        if not timeout or timeout <= 0:
            raise ConfigurationError(
                f"Timeout for {self.__class__.__name__} must be a positive "
                f"number of seconds, got {timeout!r}."
            )

        self.client = client
        self.user_agent = user_agent
        self.timeout = timeout
        self.retry_policy = retry_policy or BackoffPolicy()
        self.logger = logging.getLogger(self.__class__.__name__)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if extra:
            headers.update(extra)
        return headers
