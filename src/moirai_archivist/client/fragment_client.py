"""Async client for the fragment generation service.

One call is one retry loop:

    Idle -> Attempting(i) -> Success | Retrying(i+1) | Failed

The call suspends while waiting on the network and on backoff sleeps. Nothing
is shared between calls: each owns its HTTP connection pool, attempt counter
and timers.
"""
from __future__ import annotations
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError as PydanticValidationError

from moirai_archivist.client.retry import (
    RetryReason,
    backoff_delay,
    classify_exception,
    classify_response,
    should_retry,
)
from moirai_archivist.common.config import ClientConfig
from moirai_archivist.common.errors import (
    ConfigurationError,
    RequestCancelled,
    TransportError,
    ValidationError,
)
from moirai_archivist.common.schema import (
    FRAGMENT_JSON_SCHEMA,
    CausalForce,
    GenerationRequest,
    GenerationResult,
)
from moirai_archivist.common.templates import extract_system, load_template

LOGGER = logging.getLogger("moirai.client")

Sleep = Callable[[float], Awaitable[None]]


def build_request(
    difficulty_tier: int,
    secret_tag: CausalForce | str,
    genre: str | None = None,
) -> GenerationRequest:
    """Validate caller input into a GenerationRequest, raising ValidationError."""
    try:
        return GenerationRequest(
            difficultyTier=difficulty_tier,
            secretTag=secret_tag,
            genre=genre,
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid fragment request: {_summarise(e)}") from e


def parse_result(response: httpx.Response) -> GenerationResult:
    """Parse a 2xx body into a GenerationResult, raising ValidationError."""
    try:
        data = response.json()
    except ValueError as e:
        raise ValidationError("Fragment service returned a body that is not JSON.") from e
    try:
        return GenerationResult.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Fragment service returned an unexpected data structure: {_summarise(e)}"
        ) from e


def _summarise(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "body"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def _error_detail(response: httpx.Response) -> str:
    """Best-effort ``{error}`` message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "Unknown server error"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or "Unknown server error"


class FragmentClient:
    """
    Requests fragments from the service described by a ClientConfig.

    Args:
        config: Endpoint, credential and retry limits.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
        sleep: Awaitable sleep used between attempts.
        rng: Random source for backoff jitter.
        system_instruction: Fixed style prompt sent with each request; read
            from the prompt template when omitted.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
        system_instruction: str | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._system_instruction = system_instruction

    @property
    def system_instruction(self) -> str:
        if self._system_instruction is None:
            try:
                self._system_instruction = extract_system(load_template())
            except OSError as e:
                LOGGER.warning("Failed to read prompt template, using default persona: %s", e)
                self._system_instruction = extract_system("")
        return self._system_instruction

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload = request.to_wire()
        payload["systemInstruction"] = self.system_instruction
        payload["responseSchema"] = FRAGMENT_JSON_SCHEMA
        return payload

    async def request_fragment(
        self,
        difficulty_tier: int,
        secret_tag: CausalForce | str,
        genre: str | None = None,
        deadline: float | None = None,
    ) -> GenerationResult:
        """
        Request one fragment, retrying rate limits and network failures.

        Args:
            difficulty_tier: Current tier, >= 1.
            secret_tag: Causal force to embed.
            genre: Narrative setting; ``"Random"`` when omitted.
            deadline: Seconds after which the call is abandoned, including
                any in-flight request and pending backoff.

        Returns:
            The validated fragment.

        Raises:
            ConfigurationError: Credential or endpoint missing; no request is sent.
            ValidationError: Invalid input, or a malformed response.
            TransportError: Non-retryable status or retries exhausted.
            RequestCancelled: ``deadline`` expired.
        """
        self.config.require()
        request = build_request(difficulty_tier, secret_tag, genre)
        if deadline is None:
            return await self._run(request)
        try:
            return await asyncio.wait_for(self._run(request), timeout=deadline)
        except asyncio.TimeoutError as e:
            LOGGER.warning("Fragment request abandoned after %.2fs deadline", deadline)
            raise RequestCancelled(
                f"Fragment request did not complete within {deadline:.2f}s."
            ) from e

    async def _run(self, request: GenerationRequest) -> GenerationResult:
        payload = self.build_payload(request)
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        max_attempts = self.config.max_attempts
        last_error: Exception | None = None
        last_status: int | None = None

        async with httpx.AsyncClient(
            timeout=self.config.timeout_s, transport=self._transport
        ) as http:
            for attempt in range(max_attempts):
                if attempt > 0:
                    reason = (
                        RetryReason.RATE_LIMITED if last_status is not None
                        else RetryReason.NETWORK
                    )
                    delay = backoff_delay(attempt, reason, self._rng)
                    LOGGER.info(
                        "Retrying fragment request in %.2fs (attempt %d/%d, %s)",
                        delay, attempt + 1, max_attempts, reason.value,
                    )
                    await self._sleep(delay)

                LOGGER.debug("Attempting fragment request %d/%d", attempt + 1, max_attempts)
                try:
                    response = await http.post(
                        self.config.endpoint, headers=headers, json=payload
                    )
                except httpx.InvalidURL as e:
                    raise ConfigurationError(
                        f"Fragment service endpoint is not a valid URL: {e}"
                    ) from e
                except httpx.HTTPError as e:
                    if classify_exception(e) is None:
                        raise TransportError(
                            f"Fragment request failed: {e}", attempts=attempt + 1
                        ) from e
                    LOGGER.warning(
                        "Network error on attempt %d/%d: %s", attempt + 1, max_attempts, e
                    )
                    last_error, last_status = e, None
                    if should_retry(attempt, max_attempts):
                        continue
                    break

                if response.is_success:
                    result = parse_result(response)
                    LOGGER.debug("Fragment received on attempt %d", attempt + 1)
                    return result

                detail = _error_detail(response)
                if classify_response(response) is not None:
                    LOGGER.warning(
                        "Rate limited on attempt %d/%d: %s", attempt + 1, max_attempts, detail
                    )
                    last_error = httpx.HTTPStatusError(
                        f"Server Error ({response.status_code}): {detail}",
                        request=response.request,
                        response=response,
                    )
                    last_status = response.status_code
                    if should_retry(attempt, max_attempts):
                        continue
                    break

                LOGGER.error("Fragment service refused request (%d): %s", response.status_code, detail)
                raise TransportError(
                    f"Server Error ({response.status_code}): {detail}",
                    status_code=response.status_code,
                    attempts=attempt + 1,
                )

        LOGGER.error("Fragment request failed after %d attempts: %s", max_attempts, last_error)
        raise TransportError(
            f"Failed to contact the Archivist service after {max_attempts} attempts. "
            f"Details: {last_error}",
            status_code=last_status,
            attempts=max_attempts,
        ) from last_error


def fetch_fragment(
    config: ClientConfig,
    difficulty_tier: int,
    secret_tag: CausalForce | str,
    genre: str | None = None,
    deadline: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GenerationResult:
    """Synchronous wrapper around :meth:`FragmentClient.request_fragment`.

    Must not be called from a running event loop.
    """
    client = FragmentClient(config, transport=transport)
    return asyncio.run(client.request_fragment(difficulty_tier, secret_tag, genre, deadline))
