"""Retrying HTTP gateway for the generative-content API.

Performs a JSON POST with exponential backoff on rate limiting, and optionally
decodes a structured text answer from the response.
"""

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from .errors import ApiStatusError, MalformedResponse, ServiceUnavailable
from .models import GenerateContentResponse

logger = logging.getLogger(__name__)

RATE_LIMITED = 429
BACKOFF_BASE_MS = 1000
BACKOFF_JITTER_MS = 1000


def backoff_bounds(attempt: int) -> tuple[float, float]:
    """Return the (low, high) delay window in milliseconds for a zero-based attempt."""
    low = (2 ** attempt) * BACKOFF_BASE_MS
    return float(low), float(low + BACKOFF_JITTER_MS)


def backoff_delay_ms(attempt: int, jitter: Callable[[float, float], float] = random.uniform) -> float:
    low, _ = backoff_bounds(attempt)
    return low + jitter(0, BACKOFF_JITTER_MS)


def extract_text(data: Any) -> str:
    """Pull ``candidates[0].content.parts[0].text`` out of a response body.

    Raises:
        MalformedResponse: If the nested text field is missing.
    """
    try:
        parsed = GenerateContentResponse.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedResponse(f"Unexpected response shape: {e.error_count()} validation errors") from e
    part = parsed.first_part()
    if part is None or not part.text:
        raise MalformedResponse("Structured response missing or invalid.")
    return part.text


class RetryingApiGateway:
    """Async POST client with retry semantics.

    * HTTP 429 with attempts left: sleep ``2**attempt * 1000ms + uniform(0, 1000)ms``, retry.
    * Other non-2xx status: fail immediately with ``ApiStatusError``.
    * Transport errors: retried; exhaustion is reported as one ``ServiceUnavailable``.
    """

    def __init__(
        self,
        api_key: str = "",
        timeout: float = 30.0,
        max_attempts: int = 3,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._client = client
        self._sleep = sleep or asyncio.sleep
        self._jitter = jitter

    @property
    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        endpoint: str,
        payload: dict,
        max_attempts: Optional[int] = None,
        expect_text: bool = False,
        response_schema: Optional[dict] = None,
    ) -> Any:
        """POST ``payload`` to ``endpoint`` with retries.

        Args:
            endpoint: Full URL to call
            payload: JSON body (not mutated)
            max_attempts: Override the gateway default
            expect_text: Return the nested candidate text instead of the raw body
            response_schema: Ask for JSON output matching this schema and return it decoded

        Returns:
            The decoded JSON body, the candidate text, or the decoded structured object.

        Raises:
            ServiceUnavailable: Rate limiting or transport errors exhausted all attempts
            ApiStatusError: Any other non-success status
            MalformedResponse: Body or structured text not in the expected shape
            ValueError: max_attempts override is less than 1
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        body = dict(payload)
        if response_schema is not None:
            body["generationConfig"] = {
                **body.get("generationConfig", {}),
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }

        client = await self.get_client()
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                logger.debug(f"POST {self._redact(endpoint)} (attempt {attempt + 1}/{attempts})")
                response = await client.post(endpoint, json=body, headers=self.headers)
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(f"Gateway transport error (attempt {attempt + 1}/{attempts}): {e}")
                if not is_last:
                    await self._backoff(attempt)
                continue

            if response.status_code == RATE_LIMITED:
                last_error = ApiStatusError(RATE_LIMITED)
                if not is_last:
                    logger.info(f"Rate limited (attempt {attempt + 1}/{attempts}), backing off")
                    await self._backoff(attempt)
                continue

            if not response.is_success:
                logger.error(f"Gateway API error: {response.status_code} - {response.text[:200]}")
                raise ApiStatusError(response.status_code, response.text)

            return self._decode(response, expect_text, response_schema)

        logger.error(f"Gateway call failed after {attempts} attempts: {last_error}")
        raise ServiceUnavailable("Failed to connect to the AI service.") from last_error

    async def _backoff(self, attempt: int) -> None:
        delay_ms = backoff_delay_ms(attempt, self._jitter)
        await self._sleep(delay_ms / 1000.0)

    @staticmethod
    def _decode(response: httpx.Response, expect_text: bool, response_schema: Optional[dict]) -> Any:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse("Response body is not valid JSON") from e

        if response_schema is not None:
            text = extract_text(data)
            try:
                return json.loads(text)
            except ValueError as e:
                raise MalformedResponse("Structured response is not valid JSON") from e

        if expect_text:
            return extract_text(data)
        return data

    @staticmethod
    def _redact(endpoint: str) -> str:
        return endpoint.split("?key=")[0]
