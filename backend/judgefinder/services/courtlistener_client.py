"""
services/courtlistener_client.py

Rate-limited async client for the CourtListener REST API.

Every attempt draws one unit from the global quota (services/rate_limiter.py)
before it is sent. Failure handling:

  - 429            → retry, backoff ×1.5, Retry-After honoured (seconds or HTTP-date)
  - 5xx            → retry with exponential backoff + jitter
  - network/timeout→ retry, same path as 5xx
  - other 4xx      → UpstreamError immediately (404 → None when allow_404)
  - retries used up→ SyncExhausted carrying the last status

A small circuit breaker stops hammering the API after repeated exhausted calls.
"""
from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.services.rate_limiter import GlobalRateLimiter, rate_limiter
from judgefinder.utils.exceptions import SyncExhausted, UpstreamError


@dataclass
class CallRecord:
    endpoint: str
    attempts: int
    status: Optional[int]
    elapsed_ms: float
    ok: bool


class CourtListenerClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        limiter: Optional[GlobalRateLimiter] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        wait_for_quota: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self.api_key = settings.COURTLISTENER_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.COURTLISTENER_BASE_URL).rstrip("/")
        self.limiter = limiter or rate_limiter
        self.timeout = timeout or settings.COURTLISTENER_TIMEOUT_SECONDS
        self.max_retries = settings.COURTLISTENER_MAX_RETRIES if max_retries is None else max(0, max_retries)
        self.base_delay = settings.COURTLISTENER_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self.max_delay = settings.COURTLISTENER_MAX_DELAY_SECONDS if max_delay is None else max_delay
        self.max_retry_after = settings.COURTLISTENER_MAX_WAIT_SECONDS
        self.wait_for_quota = wait_for_quota
        self.transport = transport
        self.sleep = sleep
        self.clock = clock
        self.jitter = jitter

        self.failure_threshold = settings.COURTLISTENER_CIRCUIT_FAILURE_THRESHOLD
        self.cooldown_seconds = settings.COURTLISTENER_CIRCUIT_COOLDOWN_SECONDS
        self._consecutive_failures = 0
        self._circuit_open_until = 0.0

        self.last_call: Optional[CallRecord] = None
        self._client: Optional[httpx.AsyncClient] = None

    # ── HTTP plumbing ─────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": settings.COURTLISTENER_USER_AGENT,
        }
        if self.api_key:
            headers["Authorization"] = f"Token {self.api_key}"
        return headers

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CourtListenerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _backoff(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return delay + self.jitter() * self.base_delay

    def _retry_after(self, response: httpx.Response) -> Optional[float]:
        raw = (response.headers.get("Retry-After") or "").strip()
        if not raw:
            return None
        try:
            seconds = float(raw)
        except ValueError:
            try:
                when = parsedate_to_datetime(raw)
            except (TypeError, ValueError):
                return None
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            seconds = (when - datetime.now(timezone.utc)).total_seconds()
        return min(max(0.0, seconds), self.max_retry_after)

    # ── Circuit breaker ───────────────────────────────────────────────────────

    @property
    def circuit_open(self) -> bool:
        return self.clock() < self._circuit_open_until

    def _on_success(self) -> None:
        self._consecutive_failures = 0
        self._circuit_open_until = 0.0

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            self._circuit_open_until = self.clock() + self.cooldown_seconds
            logger.error(
                "CourtListener circuit opened after %d consecutive failures",
                self._consecutive_failures,
            )

    def _finish(self, endpoint: str, attempts: int, status: Optional[int], started: float, ok: bool) -> None:
        self.last_call = CallRecord(
            endpoint=endpoint,
            attempts=attempts,
            status=status,
            elapsed_ms=round((self.clock() - started) * 1000, 1),
            ok=ok,
        )
        logger.info(
            "courtlistener call",
            extra={
                "endpoint": endpoint,
                "attempts": attempts,
                "status": status,
                "elapsed_ms": self.last_call.elapsed_ms,
                "ok": ok,
            },
        )

    # ── Core request ──────────────────────────────────────────────────────────

    async def request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Dict[str, Any]]:
        if self.circuit_open:
            raise UpstreamError("CourtListener circuit breaker open", retryable=True)

        # Absolute URLs are pagination cursors and already carry their query.
        if endpoint.startswith(("http://", "https://")):
            query = params
        else:
            query = {"format": "json", **{k: v for k, v in (params or {}).items() if v is not None}}

        started = self.clock()
        last_status: Optional[int] = None
        last_error = ""
        max_attempts = self.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            await self.limiter.acquire(1, wait=self.wait_for_quota)

            try:
                response = await self._http().get(endpoint, params=query)
            except httpx.TimeoutException as exc:
                last_status, last_error = None, f"timeout: {exc}"
                delay = self._backoff(attempt)
            except httpx.TransportError as exc:
                last_status, last_error = None, f"network error: {exc}"
                delay = self._backoff(attempt)
            else:
                last_status = response.status_code
                if response.status_code < 400:
                    self._on_success()
                    self._finish(endpoint, attempt, last_status, started, ok=True)
                    return response.json()
                if response.status_code == 404 and allow_404:
                    self._on_success()
                    self._finish(endpoint, attempt, last_status, started, ok=True)
                    return None
                if response.status_code == 429:
                    retry_after = self._retry_after(response)
                    delay = retry_after if retry_after is not None else self._backoff(attempt) * 1.5
                    last_error = "rate limited by CourtListener"
                elif response.status_code >= 500:
                    delay = self._backoff(attempt)
                    last_error = f"server error {response.status_code}"
                else:
                    self._finish(endpoint, attempt, last_status, started, ok=False)
                    raise UpstreamError(
                        f"CourtListener {response.status_code} for {endpoint}",
                        status=response.status_code,
                        retryable=False,
                    )

            if attempt >= max_attempts:
                break
            logger.warning(
                "CourtListener %s failed (%s), retry %d/%d in %.1fs",
                endpoint, last_error, attempt, self.max_retries, delay,
            )
            await self.sleep(delay)

        self._on_failure()
        self._finish(endpoint, max_attempts, last_status, started, ok=False)
        raise SyncExhausted(
            f"CourtListener {endpoint} failed after {max_attempts} attempts: {last_error}",
            last_status=last_status,
            attempts=max_attempts,
        )

    async def paginate(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        next_url: Optional[str] = endpoint
        query = params
        pages = 0
        while next_url and (max_pages is None or pages < max_pages):
            payload = await self.request(next_url, query) or {}
            pages += 1
            for item in payload.get("results") or []:
                yield item
            next_url = payload.get("next")
            query = None

    async def _collect(self, endpoint: str, params: Dict[str, Any], max_pages: Optional[int] = None) -> List[Dict[str, Any]]:
        return [item async for item in self.paginate(endpoint, params, max_pages=max_pages)]

    # ── Typed endpoints ───────────────────────────────────────────────────────

    async def get_judge(self, person_id: str) -> Optional[Dict[str, Any]]:
        return await self.request(f"/people/{person_id}/", allow_404=True)

    def list_judges(self, params: Optional[Dict[str, Any]] = None, max_pages: Optional[int] = None):
        return self.paginate("/people/", params, max_pages=max_pages)

    async def get_court(self, court_id: str) -> Optional[Dict[str, Any]]:
        return await self.request(f"/courts/{court_id}/", allow_404=True)

    def list_courts(self, params: Optional[Dict[str, Any]] = None, max_pages: Optional[int] = None):
        return self.paginate("/courts/", params, max_pages=max_pages)

    async def get_positions(self, person_id: str) -> List[Dict[str, Any]]:
        return await self._collect("/positions/", {"person": person_id})

    async def get_educations(self, person_id: str) -> List[Dict[str, Any]]:
        return await self._collect("/educations/", {"person": person_id})

    async def get_political_affiliations(self, person_id: str) -> List[Dict[str, Any]]:
        return await self._collect("/political-affiliations/", {"person": person_id})

    async def get_opinions_by_judge(
        self,
        person_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        page_size: int = 100,
        max_pages: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = {
            "author": person_id,
            "cluster__date_filed__gte": start_date,
            "cluster__date_filed__lte": end_date,
            "page_size": page_size,
            "ordering": "-date_created",
        }
        return await self._collect("/opinions/", params, max_pages=max_pages)

    async def get_dockets_by_judge(
        self,
        person_id: str,
        start_date: Optional[str] = None,
        page_size: int = 100,
        max_pages: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = {
            "assigned_to_id": person_id,
            "date_filed__gte": start_date,
            "page_size": page_size,
            "ordering": "-date_filed",
        }
        return await self._collect("/dockets/", params, max_pages=max_pages)


courtlistener_client = CourtListenerClient()
