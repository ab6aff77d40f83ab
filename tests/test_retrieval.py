"""Tests for the retrieval orchestrator's tier cascade."""

import json

import httpx
import pytest

from conftest import make_config, make_orchestrator
from web2video.core.exceptions import ConfigurationError
from web2video.services.retrieval import Failure, Success

TARGET = "https://target.test/page"
SOLVER = "http://solver.test:8191"


def _always(status: int, body: str = "<html></html>"):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, text=body)

    handler.calls = calls
    return handler


def _sequence(*statuses: int):
    """Target answers with the given statuses in order (last one repeats)."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        status = statuses[min(len(calls) - 1, len(statuses) - 1)]
        return httpx.Response(status, text=f"<html>{status}</html>")

    handler.calls = calls
    return handler


class TestDirectTier:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("retries", [1, 2, 3, 5])
    async def test_transport_error_attempted_exactly_n_times(self, retries):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("Connection refused", request=request)

        orch = make_orchestrator(make_config(normal_retries=retries), handler)
        outcome = await orch.fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert len(calls) == retries
        assert len(outcome.attempts) == retries
        assert all(a.tier == "direct" for a in outcome.attempts)
        assert [a.attempt for a in outcome.attempts] == list(range(1, retries + 1))
        assert "Connection refused" in outcome.attempts[0].error

    @pytest.mark.asyncio
    async def test_first_success_returns_immediately(self):
        handler = _always(200, "<html>hello</html>")
        orch = make_orchestrator(make_config(normal_retries=3), handler)
        outcome = await orch.fetch(TARGET)

        assert isinstance(outcome, Success)
        assert outcome.ok
        assert outcome.body == "<html>hello</html>"
        assert outcome.status_code == 200
        assert outcome.tier == "direct"
        assert outcome.attempts == []
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 429, 503])
    async def test_blocked_statuses_escalate(self, status):
        handler = _sequence(status, 200)
        config = make_config(bypass_enabled=True, bypass_methods=("headers",), bypass_retries=1)
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Success)
        assert outcome.tier == "header_rotation"
        assert len(outcome.attempts) == 1
        assert outcome.attempts[0].tier == "direct"
        assert outcome.attempts[0].error == f"Request blocked with status {status}"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 429, 503])
    async def test_blocked_status_is_never_success(self, status):
        outcome = await make_orchestrator(make_config(), _always(status)).fetch(TARGET)
        assert isinstance(outcome, Failure)

    @pytest.mark.asyncio
    async def test_always_503_with_two_retries_yields_two_direct_records(self):
        handler = _always(503)
        outcome = await make_orchestrator(make_config(normal_retries=2), handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert len(outcome.attempts) == 2
        assert [a.tier for a in outcome.attempts] == ["direct", "direct"]
        assert [a.label for a in outcome.attempts] == ["normal_attempt_1", "normal_attempt_2"]
        assert outcome.message == (
            "All fetch methods failed: "
            "normal_attempt_1: Request blocked with status 503, "
            "normal_attempt_2: Request blocked with status 503"
        )

    @pytest.mark.asyncio
    async def test_non_blocking_4xx_is_usable(self):
        outcome = await make_orchestrator(make_config(), _always(404, "missing")).fetch(TARGET)
        assert isinstance(outcome, Success)
        assert outcome.status_code == 404

    @pytest.mark.asyncio
    async def test_other_5xx_is_transport_failure(self):
        outcome = await make_orchestrator(make_config(), _always(500)).fetch(TARGET)
        assert isinstance(outcome, Failure)
        assert outcome.attempts[0].error == "Request failed with status code 500"

    @pytest.mark.asyncio
    async def test_randomized_delay_between_direct_attempts(self, sleep_recorder):
        config = make_config(normal_retries=3, retry_delay=1000)
        orch = make_orchestrator(config, _always(503), sleep=sleep_recorder)
        await orch.fetch(TARGET)

        # No delay after the final attempt
        assert len(sleep_recorder.calls) == 2
        assert all(1.0 <= s <= 2.0 for s in sleep_recorder.calls)

    @pytest.mark.asyncio
    async def test_headers_regenerated_and_overrides_kept(self):
        handler = _always(503)
        config = make_config(normal_retries=3, user_agents=("UA-A", "UA-B", "UA-C"))
        orch = make_orchestrator(config, handler)
        await orch.fetch(TARGET, headers={"X-Trace": "abc", "Referer": "https://ref.test/"})

        assert len(handler.calls) == 3
        for request in handler.calls:
            assert request.headers["X-Trace"] == "abc"
            assert request.headers["Referer"] == "https://ref.test/"
            assert request.headers["User-Agent"] in {"UA-A", "UA-B", "UA-C"}

    @pytest.mark.asyncio
    async def test_method_override(self):
        handler = _always(200)
        await make_orchestrator(make_config(), handler).fetch(TARGET, method="HEAD")
        assert handler.calls[0].method == "HEAD"

    @pytest.mark.asyncio
    async def test_empty_user_agent_pool_raises(self):
        orch = make_orchestrator(make_config(user_agents=()), _always(200))
        with pytest.raises(ConfigurationError):
            await orch.fetch(TARGET)

    @pytest.mark.asyncio
    async def test_unparseable_url_recorded_per_attempt(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        orch = make_orchestrator(make_config(normal_retries=3), handler)
        outcome = await orch.fetch("http://[::1/x")

        assert isinstance(outcome, Failure)
        assert calls == []
        assert [a.label for a in outcome.attempts] == [
            "normal_attempt_1",
            "normal_attempt_2",
            "normal_attempt_3",
        ]

    @pytest.mark.asyncio
    async def test_long_redirect_chain_fails_on_injected_client(self):
        def handler(request):
            hop = int(request.url.params.get("hop", "0"))
            if hop < 8:
                return httpx.Response(302, headers={"Location": f"{TARGET}?hop={hop + 1}"})
            return httpx.Response(200, text="landed after 8 hops")

        outcome = await make_orchestrator(make_config(), handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert outcome.attempts[0].error == "Exceeded maximum allowed redirects (5)"


def _solver_router(envelope: dict | None = None, target_status: int = 403, solver_status: int = 200):
    """Route solver endpoints to `envelope`, everything else to `target_status`."""
    solver_calls = []
    target_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host.startswith("solver"):
            solver_calls.append(request)
            return httpx.Response(solver_status, json=envelope)
        target_calls.append(request)
        return httpx.Response(target_status, text="blocked")

    handler.solver_calls = solver_calls
    handler.target_calls = target_calls
    return handler


class TestSolverTier:
    @pytest.mark.asyncio
    async def test_ok_envelope_returns_body_verbatim(self):
        body = "<html><body><video src='a.mp4'></video></body></html>"
        handler = _solver_router(
            {"status": "ok", "solution": {"response": body, "status": 200, "headers": {}}}
        )
        config = make_config(solver_enabled=True, solver_endpoints=(SOLVER,))
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Success)
        assert outcome.body == body
        assert outcome.status_code == 200
        assert outcome.tier == "solver_proxy"
        assert [a.tier for a in outcome.attempts] == ["direct"]

        sent = handler.solver_calls[0]
        assert str(sent.url) == f"{SOLVER}/v1"
        payload = json.loads(sent.content)
        assert payload["cmd"] == "request.get"
        assert payload["url"] == TARGET
        assert payload["maxTimeout"] == config.solver_max_timeout
        assert payload["session"] == config.session_id
        assert "User-Agent" in payload["headers"]

    @pytest.mark.asyncio
    async def test_session_omitted_when_disabled(self):
        handler = _solver_router(
            {"status": "ok", "solution": {"response": "x", "status": 200, "headers": {}}}
        )
        config = make_config(solver_enabled=True, solver_endpoints=(SOLVER,), session_enabled=False)
        await make_orchestrator(config, handler).fetch(TARGET)
        assert "session" not in json.loads(handler.solver_calls[0].content)

    @pytest.mark.asyncio
    async def test_endpoints_tried_in_order_with_per_endpoint_retries(self, sleep_recorder):
        handler = _solver_router({"status": "error", "message": "Challenge not solved"})
        config = make_config(
            solver_enabled=True,
            solver_endpoints=("http://solver-a.test", "http://solver-b.test"),
            solver_retries=2,
            fallback_delay=500,
            retry_delay=1000,
        )
        outcome = await make_orchestrator(config, handler, sleep=sleep_recorder).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert [a.label for a in outcome.attempts] == [
            "normal_attempt_1",
            "flaresolverr_1_1",
            "flaresolverr_1_2",
            "flaresolverr_2_1",
            "flaresolverr_2_2",
        ]
        assert [c.url.host for c in handler.solver_calls] == [
            "solver-a.test",
            "solver-a.test",
            "solver-b.test",
            "solver-b.test",
        ]
        assert outcome.attempts[1].error == "Solver error: Challenge not solved"
        assert outcome.attempts[1].endpoint_index == 1
        assert outcome.attempts[3].endpoint_index == 2
        # fallback before each attempt, retry between attempts and endpoints
        assert sleep_recorder.calls == [0.5, 1.0, 0.5, 1.0, 0.5, 1.0, 0.5]

    @pytest.mark.asyncio
    async def test_solver_http_error_recorded(self):
        handler = _solver_router({"status": "ok"}, solver_status=500)
        config = make_config(solver_enabled=True, solver_endpoints=(SOLVER,), solver_retries=1)
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert outcome.attempts[-1].tier == "solver_proxy"
        assert "HTTP 500" in outcome.attempts[-1].error

    @pytest.mark.asyncio
    async def test_enabled_without_endpoints_is_skipped(self):
        handler = _solver_router({"status": "ok"})
        config = make_config(solver_enabled=True, solver_endpoints=())
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert handler.solver_calls == []
        assert [a.tier for a in outcome.attempts] == ["direct"]

    @pytest.mark.asyncio
    async def test_disabled_solver_never_called(self):
        handler = _solver_router({"status": "ok"})
        config = make_config(solver_enabled=False, solver_endpoints=(SOLVER,))
        await make_orchestrator(config, handler).fetch(TARGET)
        assert handler.solver_calls == []

    @pytest.mark.asyncio
    async def test_malformed_solution_escalates_to_bypass(self):
        handler = _solver_router({"status": "ok", "solution": "garbage"})
        config = make_config(
            solver_enabled=True,
            solver_endpoints=(SOLVER,),
            solver_retries=2,
            bypass_enabled=True,
            bypass_methods=("headers",),
            bypass_retries=1,
        )
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert [a.label for a in outcome.attempts] == [
            "normal_attempt_1",
            "flaresolverr_1_1",
            "flaresolverr_1_2",
            "headers_1",
        ]
        assert "malformed solution" in outcome.attempts[1].error
        assert len(handler.solver_calls) == 2


class TestBypassTier:
    @pytest.mark.asyncio
    async def test_solver_alias_is_skipped(self):
        handler = _always(403)
        config = make_config(
            bypass_enabled=True,
            bypass_methods=("flaresolverr", "headers"),
            bypass_retries=2,
        )
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert [a.label for a in outcome.attempts] == [
            "normal_attempt_1",
            "headers_1",
            "headers_2",
        ]
        assert outcome.attempts[1].method == "headers"
        assert outcome.attempts[1].error == "Method headers returned status 403"

    @pytest.mark.asyncio
    async def test_rotation_rejects_any_4xx(self):
        handler = _sequence(403, 404)
        config = make_config(bypass_enabled=True, bypass_methods=("useragent",), bypass_retries=1)
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        assert outcome.attempts[-1].error == "Method useragent returned status 404"

    @pytest.mark.asyncio
    async def test_headless_browser_fails_predictably(self):
        handler = _always(403)
        config = make_config(
            bypass_enabled=True, bypass_methods=("headless_browser",), bypass_retries=2
        )
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Failure)
        headless = [a for a in outcome.attempts if a.tier == "headless_browser"]
        assert len(headless) == 2
        assert all(a.error == "Headless browser bypass not implemented yet" for a in headless)
        # Only the direct attempt reached the network
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_bypass_delays(self, sleep_recorder):
        config = make_config(
            bypass_enabled=True,
            bypass_methods=("headers",),
            bypass_retries=2,
            fallback_delay=500,
            retry_delay=1000,
        )
        await make_orchestrator(config, _always(403), sleep=sleep_recorder).fetch(TARGET)
        assert sleep_recorder.calls == [0.5, 1.0, 0.5]

    @pytest.mark.asyncio
    async def test_full_cascade_order(self):
        handler = _solver_router({"status": "error", "message": "nope"})
        config = make_config(
            normal_retries=2,
            solver_enabled=True,
            solver_endpoints=(SOLVER,),
            solver_retries=1,
            bypass_enabled=True,
            bypass_methods=("headers", "flaresolverr", "referer", "headless_browser"),
            bypass_retries=1,
        )
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert [a.label for a in outcome.attempts] == [
            "normal_attempt_1",
            "normal_attempt_2",
            "flaresolverr_1_1",
            "headers_1",
            "referer_1",
            "headless_browser_1",
        ]

    @pytest.mark.asyncio
    async def test_success_carries_preceding_failures(self):
        handler = _sequence(403, 403, 200)
        config = make_config(bypass_enabled=True, bypass_methods=("headers", "referer"), bypass_retries=1)
        outcome = await make_orchestrator(config, handler).fetch(TARGET)

        assert isinstance(outcome, Success)
        assert [a.label for a in outcome.attempts] == ["normal_attempt_1", "headers_1"]


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_override_timeout_applied(self):
        handler = _always(200)
        await make_orchestrator(make_config(), handler).fetch(TARGET, timeout=2500)
        assert handler.calls[0].extensions["timeout"]["read"] == 2.5

    @pytest.mark.asyncio
    async def test_configured_timeout_by_default(self):
        handler = _always(200)
        await make_orchestrator(make_config(timeout=12000), handler).fetch(TARGET)
        assert handler.calls[0].extensions["timeout"]["read"] == 12.0
