from __future__ import annotations

from functools import lru_cache
from contextlib import contextmanager
from threading import BoundedSemaphore
import logging

import openai
from openai import OpenAI

from ..core.config import get_settings
from ..core.errors import BackendError, BackendTimeout

logger = logging.getLogger(__name__)

_llm_semaphore: BoundedSemaphore | None = None


def _get_semaphore() -> BoundedSemaphore:
    """
    Lazy-initialised global semaphore for limiting concurrent LLM calls.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        settings = get_settings()
        _llm_semaphore = BoundedSemaphore(settings.LLM_MAX_CONCURRENCY)
    return _llm_semaphore


@contextmanager
def limit_llm_concurrency():
    """
    Simple context manager to bound concurrent calls to the LLM provider.

    Usage:

        with limit_llm_concurrency():
            client.chat.completions.create(...)
    """
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Centralised factory for the OpenAI‑compatible client.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.

    ``max_retries=0``: a failed generation call fails the job; the user
    resubmits as a new job instead of the SDK retrying behind our back.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            max_retries=0,
            default_headers={
                "HTTP-Referer": settings.OPENROUTER_SITE_URL or "http://localhost:3000",
                "X-Title": "AI Website Builder",
            },
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(api_key=settings.OPENAI_API_KEY.strip(), max_retries=0)

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


class GenerationBackend:
    """
    Single request/response completion call with a hard timeout.

    Any timeout, non-2xx status or transport failure is raised as
    BackendTimeout / BackendError; nothing is retried here.
    """

    def __init__(
        self,
        client: OpenAI | None = None,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self.model = model or settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def complete(self, system_prompt: str, user_prompt: str, *, timeout: float) -> str:
        try:
            with limit_llm_concurrency():
                resp = self.client.with_options(timeout=timeout, max_retries=0).chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    response_format={"type": "json_object"},
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
        except openai.APITimeoutError as e:
            raise BackendTimeout(
                f"AI request timed out after {timeout:g}s - this usually means high demand. Please try again."
            ) from e
        except openai.APIStatusError as e:
            body = (e.response.text or "")[:300] if e.response is not None else ""
            raise BackendError(
                f"AI API error: {e.status_code} - {body}".rstrip(" -"),
                status_code=e.status_code,
            ) from e
        except openai.APIConnectionError as e:
            raise BackendError(f"AI API connection failed: {e}") from e

        if not resp.choices:
            raise BackendError("AI API returned no choices")
        content = resp.choices[0].message.content
        if not content:
            raise BackendError("AI API returned an empty completion")
        return content
