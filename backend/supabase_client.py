"""
Supabase REST client — thin async wrapper over PostgREST RPC calls.

Both the queue (pgmq_public.pop / send / archive) and the follow backend
(public.handle_follow_action) talk to Supabase through remote procedures,
so this client only needs one verb:

    client = SupabaseRestClient(settings.supabase)
    rows = await client.rpc("pop", {"queue_name": "profile_events", "count": 10},
                            schema="pgmq_public")

The client is constructed once by the caller and passed to whatever needs it.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from config.settings import SupabaseConfig

logger = structlog.get_logger()


class SupabaseRequestError(Exception):
    """Raised when a Supabase REST call fails (transport or HTTP error)."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class SupabaseRestClient:
    """
    PostgREST client authenticated with the service role key.
    Transport failures are retried with exponential backoff; HTTP error
    responses are returned to the caller as SupabaseRequestError at once.
    """

    def __init__(
        self,
        config: SupabaseConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    @property
    def rest_url(self) -> str:
        return f"{self.config.url.rstrip('/')}/rest/v1"

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            key = self.config.service_role_key
            headers = {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            }
            self.client = httpx.AsyncClient(
                base_url=self.rest_url,
                headers=headers,
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self.client

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.max_retries)),
            wait=wait_exponential(multiplier=0.5, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await client.request(method, path, **kwargs)

    async def rpc(
        self,
        function: str,
        params: dict[str, Any] = None,
        schema: str = "",
    ) -> Any:
        """
        Invoke a Postgres function through /rpc/<function>.
        Returns the decoded JSON body (None for void functions).
        """
        headers = {}
        if schema and schema != "public":
            headers["Content-Profile"] = schema
            headers["Accept-Profile"] = schema

        try:
            response = await self._send(
                "POST", f"/rpc/{function}", json=params or {}, headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("supabase_transport_error", function=function, schema=schema or "public", error=str(e))
            raise SupabaseRequestError(f"{type(e).__name__}: {e}") from e

        if response.is_error:
            message, code = _error_details(response)
            logger.warning("supabase_rpc_error",
                           function=function,
                           schema=schema or "public",
                           status=response.status_code,
                           code=code,
                           error=message)
            raise SupabaseRequestError(message, status_code=response.status_code, code=code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning("supabase_rpc_invalid_json",
                           function=function,
                           status=response.status_code,
                           body=response.text[:200])
            raise SupabaseRequestError(
                f"invalid JSON from {function}", status_code=response.status_code,
            ) from e

    async def close(self):
        if self.client:
            await self.client.aclose()


def _error_details(response: httpx.Response) -> tuple[str, str]:
    """Pull the PostgREST {message, code} error body, falling back to raw text."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", ""
    if isinstance(body, dict):
        return str(body.get("message") or body), str(body.get("code") or "")
    return str(body), ""
