"""Tests for core/reasoning.py."""

from __future__ import annotations

import pytest

from appvet.core.budget import BudgetTracker, RateLimiter
from appvet.core.reasoning import ReasoningClient, extract_json, strip_code_fences
from appvet.exceptions import (
    BackendOverloaded,
    BackendRateLimited,
    RateLimitExceeded,
    ReasoningError,
    StructuredDecodeError,
)
from appvet.models.finding import Finding, Severity

from conftest import FakeProvider, failed, ok


class TestExtractJson:
    def test_plain_array(self):
        assert extract_json('[{"a": 1}]') == [{"a": 1}]

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"score": 90}\n```\nThanks'
        assert extract_json(text) == {"score": 90}

    def test_prose_around_json(self):
        assert extract_json('I found these issues: [1, 2, 3]. Done.') == [1, 2, 3]

    def test_skips_unbalanced_brackets(self):
        assert extract_json('Note [see below] {"ok": true}') == {"ok": True}

    def test_no_json_raises(self):
        with pytest.raises(StructuredDecodeError, match="No JSON"):
            extract_json("I could not analyze this.")

    def test_strip_code_fences_passthrough(self):
        assert strip_code_fences("no fences") == "no fences"


class TestReasoningClientSend:
    @pytest.mark.asyncio
    async def test_records_usage(self):
        provider = FakeProvider([ok("hello", input_tokens=1000, output_tokens=100)])
        budget = BudgetTracker()
        client = ReasoningClient(provider, budget)

        response = await client.send("prompt", "system", max_tokens=256, temperature=0.2)

        assert response.content == "hello"
        assert response.tokens.total == 1100
        assert response.cost == pytest.approx(0.0045)
        assert budget.session_cost == pytest.approx(0.0045)
        assert budget.calls == 1
        assert provider.calls[0]["max_tokens"] == 256
        assert provider.calls[0]["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_local_rate_limit_fails_fast(self):
        provider = FakeProvider()
        budget = BudgetTracker(rate_limiter=RateLimiter(1))
        client = ReasoningClient(provider, budget)

        await client.send("p", "s")
        with pytest.raises(RateLimitExceeded):
            await client.send("p", "s")
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_backend_rate_limited(self):
        provider = FakeProvider([failed("429 | too many", 429)], retry_attempts=2)
        client = ReasoningClient(provider, BudgetTracker())
        with pytest.raises(BackendRateLimited):
            await client.send("p", "s")
        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_backend_overloaded(self):
        provider = FakeProvider([failed("529 | overloaded", 529)])
        with pytest.raises(BackendOverloaded):
            await ReasoningClient(provider, BudgetTracker()).send("p", "s")

    @pytest.mark.asyncio
    async def test_other_failures_sanitized(self):
        provider = FakeProvider([failed("401 | invalid key sk-ant-api03-leakedvalue", 401)])
        with pytest.raises(ReasoningError) as exc:
            await ReasoningClient(provider, BudgetTracker()).send("p", "s")
        assert "leakedvalue" not in str(exc.value)

    @pytest.mark.asyncio
    async def test_failed_call_costs_nothing(self):
        budget = BudgetTracker()
        provider = FakeProvider([failed()])
        with pytest.raises(ReasoningError):
            await ReasoningClient(provider, budget).send("p", "s")
        assert budget.session_cost == 0


class TestReasoningClientStructured:
    @pytest.mark.asyncio
    async def test_validates_findings(self):
        reply = [
            {
                "severity": "high",
                "category": "vulnerability",
                "title": "SQL injection",
                "description": "Query built from request params",
                "filePath": "src/db.js",
                "lineStart": 12,
            }
        ]
        client = ReasoningClient(FakeProvider([ok(reply)]), BudgetTracker())
        findings, response = await client.send_structured("p", list[Finding], "s")
        assert findings[0].severity == Severity.HIGH
        assert findings[0].file_path == "src/db.js"
        assert findings[0].confidence == 0.8
        assert response.tokens.total == 1200

    @pytest.mark.asyncio
    async def test_schema_violation(self):
        reply = [{"severity": "catastrophic", "category": "malware", "title": "x", "description": "y"}]
        client = ReasoningClient(FakeProvider([ok(reply)]), BudgetTracker())
        with pytest.raises(StructuredDecodeError, match="does not match"):
            await client.send_structured("p", list[Finding], "s")

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        client = ReasoningClient(FakeProvider([ok("[{oops")]), BudgetTracker())
        with pytest.raises(StructuredDecodeError):
            await client.send_structured("p", list[Finding], "s")
