"""Retrieval orchestrator: escalates through bypass tiers until one works.

Order is fixed and strictly sequential, cheapest first:

1. Direct request, ``normal_retries`` attempts, randomized back-off and a new
   identity between attempts.
2. Challenge-solver proxy, every configured endpoint in turn,
   ``solver_retries`` attempts each.
3. Remaining bypass methods (header rotation, headless stub),
   ``bypass_retries`` attempts each.

Every failed attempt is recorded; if nothing succeeds the caller gets the full
history instead of a bare "request failed".
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

from web2video.core.exceptions import TierError
from web2video.core.metrics import (
    fetch_attempts_total,
    fetch_duration_seconds,
    fetch_requests_total,
)
from web2video.core.runtime_config import SOLVER_METHOD_ALIAS, RetrievalConfig
from web2video.services.identity import IdentityPool
from web2video.services.proxy import ProxyManager
from web2video.services.tiers import BypassTier, RawResponse, TierContext, TierKind

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Outcome types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttemptRecord:
    tier: str  # TierKind value
    attempt: int  # 1-based within its tier (and endpoint)
    error: str
    endpoint_index: int | None = None  # 1-based, solver tier only
    method: str | None = None  # bypass method name, bypass tier only

    @property
    def label(self) -> str:
        if self.tier == TierKind.DIRECT.value:
            return f"normal_attempt_{self.attempt}"
        if self.tier == TierKind.SOLVER_PROXY.value:
            return f"{SOLVER_METHOD_ALIAS}_{self.endpoint_index}_{self.attempt}"
        return f"{self.method}_{self.attempt}"

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "attempt": self.attempt,
            "endpoint_index": self.endpoint_index,
            "method": self.method,
            "error": self.error,
        }


@dataclass
class Success:
    status_code: int
    headers: dict[str, str]
    body: str
    content: bytes
    tier: str
    attempts: list[AttemptRecord] = field(default_factory=list)

    ok = True


@dataclass
class Failure:
    attempts: list[AttemptRecord] = field(default_factory=list)

    ok = False

    @property
    def message(self) -> str:
        if not self.attempts:
            return "All fetch methods failed: no tier was attempted"
        details = ", ".join(f"{a.label}: {a.error}" for a in self.attempts)
        return f"All fetch methods failed: {details}"


RetrievalOutcome = Success | Failure


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class RetrievalOrchestrator:
    """Runs the tier cascade for one configuration snapshot.

    ``rng`` and ``sleep`` are injectable so attempt sequencing can be made
    deterministic. When no ``client`` is given, each ``fetch`` call opens its
    own httpx client and closes it on return.
    """

    def __init__(
        self,
        config: RetrievalConfig,
        client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.config = config
        self._client = client
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.identity = IdentityPool(config, rng=self._rng)
        self.proxies = (
            ProxyManager.from_urls(config.proxy_servers, rng=self._rng)
            if config.proxy_enabled
            else None
        )

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> RetrievalOutcome:
        """Retrieve `url`, escalating through the configured tiers.

        `headers` override generated identity headers in every tier;
        `timeout` (ms) overrides the configured per-attempt timeout.
        """
        start = time.time()
        if self._client is not None:
            outcome = await self._fetch_with(self._client, url, method, headers, timeout)
        else:
            async with httpx.AsyncClient(
                follow_redirects=True,
                max_redirects=self.config.max_redirects,
                http2=True,
            ) as client:
                outcome = await self._fetch_with(client, url, method, headers, timeout)

        fetch_duration_seconds.observe(time.time() - start)
        fetch_requests_total.labels(status="success" if outcome.ok else "failure").inc()
        return outcome

    async def _fetch_with(
        self,
        client: httpx.AsyncClient,
        url: str,
        method: str,
        headers: dict[str, str] | None,
        timeout: int | None,
    ) -> RetrievalOutcome:
        cfg = self.config
        ctx = TierContext(
            config=cfg,
            identity=self.identity,
            client=client,
            proxies=self.proxies if self.proxies and self.proxies.has_proxies else None,
            override_headers=dict(headers or {}),
        )
        timeout = timeout or cfg.timeout
        attempts: list[AttemptRecord] = []

        # === Tier 1: direct request ===
        direct = BypassTier.direct()
        request_headers = ctx.build_headers(url)
        for attempt in range(1, cfg.normal_retries + 1):
            logger.info(f"Normal fetch attempt {attempt}/{cfg.normal_retries}: {url}")
            response = await self._try(direct, ctx, url, request_headers, timeout, method, attempts, attempt)
            if response is not None:
                return self._success(response, direct, attempts)
            if attempt < cfg.normal_retries:
                await self._delay(self._rng.uniform(cfg.retry_delay, cfg.retry_delay * 2))
                request_headers = ctx.build_headers(url)

        # === Tier 2: challenge-solver proxy ===
        if cfg.solver_enabled and cfg.solver_endpoints:
            endpoints = cfg.solver_endpoints
            for index, endpoint in enumerate(endpoints, start=1):
                solver = BypassTier.solver_proxy(endpoint)
                for attempt in range(1, cfg.solver_retries + 1):
                    logger.info(
                        f"Solver endpoint {index}/{len(endpoints)} attempt "
                        f"{attempt}/{cfg.solver_retries} ({endpoint})"
                    )
                    await self._delay(cfg.fallback_delay)
                    response = await self._try(
                        solver, ctx, url, request_headers, timeout, method, attempts, attempt,
                        endpoint_index=index,
                    )
                    if response is not None:
                        return self._success(response, solver, attempts)
                    if attempt < cfg.solver_retries:
                        await self._delay(cfg.retry_delay)
                if index < len(endpoints):
                    logger.info("Trying next solver endpoint")
                    await self._delay(cfg.retry_delay)
        elif cfg.solver_enabled:
            logger.warning("Solver tier enabled but no endpoints configured, skipping")

        # === Tier 3: remaining bypass methods ===
        if cfg.bypass_enabled:
            for method_name in cfg.bypass_methods:
                # Already covered by tier 2
                if method_name.strip().lower() == SOLVER_METHOD_ALIAS:
                    continue
                tier = BypassTier.for_method(method_name)
                for attempt in range(1, cfg.bypass_retries + 1):
                    logger.info(f"Bypass method {method_name} attempt {attempt}/{cfg.bypass_retries}")
                    await self._delay(cfg.fallback_delay)
                    response = await self._try(
                        tier, ctx, url, request_headers, timeout, method, attempts, attempt,
                        bypass_method=method_name,
                    )
                    if response is not None:
                        logger.info(f"Bypass method {method_name} succeeded")
                        return self._success(response, tier, attempts)
                    if attempt < cfg.bypass_retries:
                        await self._delay(cfg.retry_delay)

        logger.warning(f"All fetch methods failed for {url} ({len(attempts)} attempts)")
        return Failure(attempts=attempts)

    async def _try(
        self,
        tier: BypassTier,
        ctx: TierContext,
        url: str,
        headers: dict[str, str],
        timeout: int,
        method: str,
        attempts: list[AttemptRecord],
        attempt: int,
        endpoint_index: int | None = None,
        bypass_method: str | None = None,
    ) -> RawResponse | None:
        """One attempt; failures are appended to `attempts` and yield None."""
        try:
            response = await tier.attempt(ctx, url, headers, timeout, method)
        except TierError as e:
            record = AttemptRecord(
                tier=tier.kind.value,
                attempt=attempt,
                error=e.reason,
                endpoint_index=endpoint_index,
                method=bypass_method,
            )
            attempts.append(record)
            fetch_attempts_total.labels(tier=tier.kind.value, outcome="failure").inc()
            logger.warning(f"{record.label} failed: {e.reason}")
            return None
        fetch_attempts_total.labels(tier=tier.kind.value, outcome="success").inc()
        return response

    async def _delay(self, milliseconds: float) -> None:
        if milliseconds > 0:
            await self._sleep(milliseconds / 1000)

    @staticmethod
    def _success(
        response: RawResponse, tier: BypassTier, attempts: list[AttemptRecord]
    ) -> Success:
        return Success(
            status_code=response.status_code,
            headers=response.headers,
            body=response.text,
            content=response.content,
            tier=tier.kind.value,
            attempts=list(attempts),
        )
