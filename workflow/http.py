"""
Outbound HTTP for the ``custom_api`` action.

One pooled ``httpx.AsyncClient`` per caller; transport-level failures
(connection refused, timeouts, resets) are retried with exponential
backoff, HTTP error statuses are returned to the workflow as-is.
"""
from __future__ import annotations

import structlog
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import HttpConfig

logger = structlog.get_logger()


class HttpCaller:

    def __init__(
        self,
        config: HttpConfig = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff: float = 0.5,
    ):
        self.config = config or HttpConfig()
        self.transport = transport
        self.backoff = backoff
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                transport=self.transport,
                timeout=self.config.timeout,
                follow_redirects=True,
            )
        return self.client

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] = None,
        content: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        client = await self._get_client()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(self.config.retries, 0) + 1),
            wait=wait_exponential(multiplier=self.backoff, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.info("http_retry", url=url, attempt=n)
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    content=content,
                    timeout=timeout or self.config.timeout,
                )
        logger.debug("http_response", method=method, url=url, status=response.status_code)
        return response

    async def close(self):
        if self.client:
            await self.client.aclose()
