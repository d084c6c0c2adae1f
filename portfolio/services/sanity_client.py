from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import lru_cache
import json
import logging
from typing import Any, Mapping, Optional

import aiohttp

from ..config import settings
from ..metrics import CONTENT_STORE_REQUESTS_TOTAL

logger = logging.getLogger("portfolio.sanity")


class ContentStoreError(RuntimeError):
    """Base content store error."""


class ContentStoreConfigurationError(ContentStoreError):
    """Raised when the Sanity project is not configured."""


class ContentStoreTimeoutError(ContentStoreError):
    """Raised when a GROQ query exceeds the timeout."""


@dataclass(frozen=True)
class SanityRuntimeConfig:
    project_id: Optional[str]
    dataset: str
    api_version: str
    token: Optional[str]
    use_cdn: bool
    timeout_seconds: float


class SanityClient:
    """Read-only GROQ client for the Sanity HTTP query API."""

    def __init__(self, cfg: SanityRuntimeConfig) -> None:
        self._cfg = cfg

    def query_url(self) -> str:
        if not self._cfg.project_id:
            raise ContentStoreConfigurationError("SANITY_PROJECT_ID is not set")
        host = "apicdn.sanity.io" if self._cfg.use_cdn else "api.sanity.io"
        return f"https://{self._cfg.project_id}.{host}/v{self._cfg.api_version}/data/query/{self._cfg.dataset}"

    @staticmethod
    def encode_params(query: str, params: Optional[Mapping[str, Any]] = None) -> dict[str, str]:
        # GROQ parameters travel as `$name=<json>` query string pairs.
        encoded = {"query": query}
        for name, value in (params or {}).items():
            encoded[f"${name}"] = json.dumps(value, ensure_ascii=False)
        return encoded

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._cfg.token:
            headers["Authorization"] = f"Bearer {self._cfg.token}"
        return headers

    async def fetch(self, query: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        url = self.query_url()
        timeout = aiohttp.ClientTimeout(total=self._cfg.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, params=self.encode_params(query, params), headers=self._headers()) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        raise ContentStoreError(f"Sanity query failed with HTTP {resp.status}: {body[:200]}")
                    payload = await resp.json()
        except asyncio.TimeoutError as exc:
            CONTENT_STORE_REQUESTS_TOTAL.labels(status="timeout").inc()
            logger.warning(
                "Sanity query timeout",
                extra={"event": "sanity_timeout", "reason": "deadline_exceeded"},
            )
            raise ContentStoreTimeoutError("Sanity query timed out") from exc
        except ContentStoreError:
            CONTENT_STORE_REQUESTS_TOTAL.labels(status="error").inc()
            raise
        except (aiohttp.ClientError, ValueError) as exc:
            CONTENT_STORE_REQUESTS_TOTAL.labels(status="error").inc()
            raise ContentStoreError(f"Sanity request failed: {exc.__class__.__name__}") from exc

        if not isinstance(payload, dict) or "result" not in payload:
            CONTENT_STORE_REQUESTS_TOTAL.labels(status="error").inc()
            raise ContentStoreError("Sanity response has no result field")

        CONTENT_STORE_REQUESTS_TOTAL.labels(status="ok").inc()
        return payload["result"]


@lru_cache(maxsize=1)
def get_sanity_client() -> SanityClient:
    return SanityClient(
        SanityRuntimeConfig(
            project_id=settings.sanity_project_id,
            dataset=settings.sanity_dataset,
            api_version=settings.sanity_api_version,
            token=settings.sanity_read_token,
            use_cdn=settings.sanity_use_cdn,
            timeout_seconds=settings.sanity_timeout,
        )
    )


async def fetch(query: str, params: Optional[Mapping[str, Any]] = None) -> Any:
    """Run a GROQ query against the configured dataset."""

    return await get_sanity_client().fetch(query, params)
