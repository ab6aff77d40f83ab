"""Bypass tiers: the ways one retrieval attempt can be made.

The set of tiers is closed: ``BypassTier`` is a small value object whose
``kind`` selects one of the attempt functions below. Configuration picks
which tiers run and in what order; it cannot add new kinds.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum

import httpx

from web2video.core.exceptions import (
    BlockedResponse,
    SolverProtocolError,
    TransportError,
    UnimplementedTierError,
)
from web2video.core.runtime_config import SOLVER_METHOD_ALIAS, RetrievalConfig
from web2video.services.identity import IdentityPool
from web2video.services.proxy import ProxyManager

logger = logging.getLogger(__name__)

# Statuses that mean "the site saw us and said no" rather than "the site is down"
BLOCKED_STATUSES = frozenset({403, 429, 503})

# Extra time the solver gets on top of its own maxTimeout before we give up on it
SOLVER_GRACE_MS = 5000

_ROTATION_METHODS = frozenset({"headers", "useragent", "referer"})
_HEADLESS_METHODS = frozenset({"headless_browser", "headless", "browser"})


class TierKind(str, Enum):
    DIRECT = "direct"
    SOLVER_PROXY = "solver_proxy"
    HEADER_ROTATION = "header_rotation"
    HEADLESS_BROWSER = "headless_browser"


@dataclass
class RawResponse:
    status_code: int
    headers: dict[str, str]
    content: bytes
    text: str


@dataclass
class TierContext:
    """Everything a tier needs for the duration of one retrieval call."""

    config: RetrievalConfig
    identity: IdentityPool
    client: httpx.AsyncClient
    proxies: ProxyManager | None = None
    override_headers: dict[str, str] = field(default_factory=dict)

    def build_headers(self, url: str) -> dict[str, str]:
        """Fresh identity headers with the caller's overrides on top."""
        return {**self.identity.headers_for(url), **self.override_headers}


@dataclass(frozen=True)
class BypassTier:
    kind: TierKind
    name: str
    endpoint: str | None = None

    @classmethod
    def direct(cls) -> "BypassTier":
        return cls(TierKind.DIRECT, "normal")

    @classmethod
    def solver_proxy(cls, endpoint: str) -> "BypassTier":
        return cls(TierKind.SOLVER_PROXY, SOLVER_METHOD_ALIAS, endpoint=endpoint.rstrip("/"))

    @classmethod
    def for_method(cls, method: str) -> "BypassTier":
        """Map a configured bypass method name onto a tier variant."""
        key = method.strip().lower()
        if key in _HEADLESS_METHODS:
            return cls(TierKind.HEADLESS_BROWSER, method)
        if key not in _ROTATION_METHODS:
            logger.warning(f"Unknown bypass method '{method}', using header rotation")
        return cls(TierKind.HEADER_ROTATION, method)

    async def attempt(
        self,
        ctx: TierContext,
        url: str,
        headers: dict[str, str],
        timeout: int,
        method: str = "GET",
    ) -> RawResponse:
        """Make one attempt. Raises a TierError subclass on failure.

        `timeout` is in milliseconds; the solver tier ignores it in favour of
        its own maxTimeout plus grace.
        """
        handler = _ATTEMPT_HANDLERS[self.kind]
        return await handler(self, ctx, url, headers, timeout, method)


# ---------------------------------------------------------------------------
# Shared HTTP helper for the direct-style tiers
# ---------------------------------------------------------------------------


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


async def _http_request(
    ctx: TierContext,
    url: str,
    headers: dict[str, str],
    timeout: int,
    method: str,
) -> httpx.Response:
    timeout_seconds = timeout / 1000
    proxy = ctx.proxies.get_random() if ctx.proxies else None
    try:
        if proxy:
            # Proxied requests need fresh clients (different proxy per request)
            async with httpx.AsyncClient(
                follow_redirects=True,
                max_redirects=ctx.config.max_redirects,
                timeout=timeout_seconds,
                proxy=proxy.to_httpx(),
            ) as client:
                response = await client.request(method, url, headers=headers)
                await response.aread()
        else:
            response = await ctx.client.request(
                method, url, headers=headers, timeout=timeout_seconds, follow_redirects=True
            )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise TransportError(_describe(e)) from e

    # A shared client may allow longer chains than the configured cap
    if len(response.history) > ctx.config.max_redirects:
        raise TransportError(
            f"Exceeded maximum allowed redirects ({ctx.config.max_redirects})"
        )
    return response


def _to_raw(response: httpx.Response) -> RawResponse:
    return RawResponse(
        status_code=response.status_code,
        headers={k.lower(): v for k, v in response.headers.items()},
        content=response.content,
        text=response.text,
    )


# ---------------------------------------------------------------------------
# Tier implementations
# ---------------------------------------------------------------------------


async def _attempt_direct(tier, ctx, url, headers, timeout, method) -> RawResponse:
    response = await _http_request(ctx, url, headers, timeout, method)
    if response.status_code in BLOCKED_STATUSES:
        raise BlockedResponse(response.status_code)
    if response.status_code >= 500:
        raise TransportError(f"Request failed with status code {response.status_code}")
    return _to_raw(response)


async def _attempt_header_rotation(tier, ctx, url, headers, timeout, method) -> RawResponse:
    # A new identity for every attempt, whatever the previous tier sent
    headers = ctx.build_headers(url)
    response = await _http_request(ctx, url, headers, timeout, method)
    if response.status_code >= 400:
        raise BlockedResponse(
            response.status_code,
            f"Method {tier.name} returned status {response.status_code}",
        )
    return _to_raw(response)


async def _attempt_solver_proxy(tier, ctx, url, headers, timeout, method) -> RawResponse:
    cfg = ctx.config
    payload: dict = {
        "cmd": "request.get",
        "url": url,
        "maxTimeout": cfg.solver_max_timeout,
    }
    if cfg.session_enabled and cfg.session_id:
        payload["session"] = cfg.session_id
    if headers:
        payload["headers"] = headers

    try:
        response = await ctx.client.post(
            f"{tier.endpoint}/v1",
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=(cfg.solver_max_timeout + SOLVER_GRACE_MS) / 1000,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise TransportError(f"Solver request failed: {_describe(e)}") from e

    if not response.is_success:
        raise TransportError(
            f"Solver request failed: {tier.endpoint} answered HTTP {response.status_code}"
        )

    try:
        data = response.json()
    except json.JSONDecodeError as e:
        raise SolverProtocolError(f"Solver returned invalid JSON: {e}") from e

    if not isinstance(data, dict) or data.get("status") != "ok":
        message = data.get("message", "unknown error") if isinstance(data, dict) else data
        raise SolverProtocolError(f"Solver error: {message}")

    try:
        solution = data.get("solution") or {}
        body = solution.get("response") or ""
        if not isinstance(body, str):
            raise TypeError(f"response is {type(body).__name__}, expected string")
        return RawResponse(
            status_code=int(solution.get("status") or 200),
            headers={str(k).lower(): str(v) for k, v in (solution.get("headers") or {}).items()},
            content=body.encode("utf-8"),
            text=body,
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise SolverProtocolError(f"Solver returned a malformed solution: {e}") from e


async def _attempt_headless_browser(tier, ctx, url, headers, timeout, method) -> RawResponse:
    raise UnimplementedTierError("Headless browser bypass not implemented yet")


_ATTEMPT_HANDLERS = {
    TierKind.DIRECT: _attempt_direct,
    TierKind.SOLVER_PROXY: _attempt_solver_proxy,
    TierKind.HEADER_ROTATION: _attempt_header_rotation,
    TierKind.HEADLESS_BROWSER: _attempt_headless_browser,
}
