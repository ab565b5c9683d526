"""Tests for maker.worker — prompt building and ballot decoding."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from maker.ratelimit import AdmissionController
from maker.schemas.consensus import CountedBallot, FlaggedBallot, FlagReason
from maker.schemas.messages import Completion, TokenUsage, UsageMeter
from maker.worker import MicroAgent, build_prompt, decode_ballot, strip_fences


def _reply(result, reasoning: str = "Adding 5 to 10 gives 15.") -> str:
    return json.dumps({"reasoning": reasoning, "result": result})


def _provider(content: str = "", *, side_effect=None) -> AsyncMock:
    provider = AsyncMock()
    if side_effect is not None:
        provider.complete.side_effect = side_effect
    else:
        provider.complete.return_value = Completion(content=content, model="test")
    return provider


# ── Fence stripping ────────────────────────────────────────────


class TestStripFences:
    def test_json_fence(self):
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_fences("```\n[1]\n```\n") == "[1]"

    def test_no_fence(self):
        assert strip_fences('  {"a": 1} ') == '{"a": 1}'


# ── Decoding ───────────────────────────────────────────────────


class TestDecodeBallot:
    def test_counted(self):
        ballot = decode_ballot(_reply(15))
        assert isinstance(ballot, CountedBallot)
        assert ballot.value == 15
        assert ballot.reasoning == "Adding 5 to 10 gives 15."

    def test_fenced_reply(self):
        ballot = decode_ballot(f"```json\n{_reply({'x': 1})}\n```")
        assert isinstance(ballot, CountedBallot)
        assert ballot.value == {"x": 1}

    def test_null_result_is_a_vote(self):
        ballot = decode_ballot(_reply(None))
        assert isinstance(ballot, CountedBallot)
        assert ballot.value is None

    def test_unparseable(self):
        ballot = decode_ballot("The answer is 15.")
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.UNPARSEABLE

    def test_explicit_error(self):
        ballot = decode_ballot('{"error": "Cannot divide by zero"}')
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.AGENT_ERROR
        assert ballot.detail == "Cannot divide by zero"

    def test_missing_reasoning(self):
        ballot = decode_ballot('{"result": 15}')
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.MALFORMED

    def test_empty_reasoning(self):
        ballot = decode_ballot(_reply(15, reasoning=""))
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.MALFORMED

    def test_missing_result(self):
        ballot = decode_ballot('{"reasoning": "thinking"}')
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.MALFORMED

    def test_non_object_reply(self):
        ballot = decode_ballot("[1, 2, 3]")
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.MALFORMED

    def test_empty_text(self):
        ballot = decode_ballot("")
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.UNPARSEABLE

    def test_oversized_integer(self):
        ballot = decode_ballot('{"reasoning": "2**20000", "result": ' + "9" * 5000 + "}")
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.UNPARSEABLE

    def test_runaway_nesting(self):
        depth = 100_000
        ballot = decode_ballot('{"reasoning": "deep", "result": ' + "[" * depth + "]" * depth + "}")
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.UNPARSEABLE

    def test_result_too_deep_to_tally(self):
        with patch("maker.worker.canonical_key", side_effect=RecursionError):
            ballot = decode_ballot(_reply([[1]]))
        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.MALFORMED

    def test_non_string_reasoning_accepted(self):
        ballot = decode_ballot('{"reasoning": 42, "result": 7}')
        assert isinstance(ballot, CountedBallot)
        assert ballot.value == 7
        assert ballot.reasoning == "42"

    def test_falsy_reasoning_flagged(self):
        for reasoning in ("0", "false", "null", "[]"):
            ballot = decode_ballot(f'{{"reasoning": {reasoning}, "result": 7}}')
            assert isinstance(ballot, FlaggedBallot), reasoning
            assert ballot.reason == FlagReason.MALFORMED


# ── Prompt building ────────────────────────────────────────────


class TestBuildPrompt:
    def test_default_template(self):
        prompt = build_prompt({"current_value": 10}, "Add 5")
        assert "Add 5" in prompt
        assert '"current_value": 10' in prompt
        assert "reasoning" in prompt

    def test_custom_template(self):
        prompt = build_prompt({"a": 1}, "Add 5", custom_prompt="Be a calculator.")
        assert prompt.startswith("Be a calculator.")
        assert "Add 5" in prompt
        assert '"a": 1' in prompt


# ── MicroAgent ─────────────────────────────────────────────────


class TestMicroAgent:
    @pytest.mark.asyncio
    async def test_returns_counted_ballot(self):
        provider = _provider(_reply(15))
        agent = MicroAgent(provider, timeout=30)

        ballot = await agent({"current_value": 10}, "Add 5")

        assert isinstance(ballot, CountedBallot)
        assert ballot.value == 15
        args, kwargs = provider.complete.call_args
        messages, system = args
        assert messages[0]["role"] == "user"
        assert "Add 5" in system
        assert kwargs["timeout"] == 30

    @pytest.mark.asyncio
    async def test_call_failure_is_flagged(self):
        provider = _provider(side_effect=RuntimeError("rate limit"))
        agent = MicroAgent(provider)

        ballot = await agent({}, "Add 5")

        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.CALL_FAILED
        assert "rate limit" in ballot.detail

    @pytest.mark.asyncio
    async def test_timeout_is_flagged(self):
        provider = _provider(side_effect=TimeoutError("timed out"))
        agent = MicroAgent(provider, dev_mode=True)

        ballot = await agent({}, "Add 5")

        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.CALL_FAILED

    @pytest.mark.asyncio
    async def test_bad_reply_is_flagged(self):
        agent = MicroAgent(_provider("not json"), dev_mode=True)

        ballot = await agent({}, "Add 5")

        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.UNPARSEABLE

    @pytest.mark.asyncio
    async def test_goes_through_limiter(self):
        provider = _provider(_reply(1))
        limiter = AdmissionController(10)
        agent = MicroAgent(provider, limiter=limiter)

        await agent({}, "Add 1")
        await agent({}, "Add 1")

        assert limiter.in_window == 2
        assert provider.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_custom_prompt_used(self):
        provider = _provider(_reply(1))
        agent = MicroAgent(provider)

        await agent({}, "Add 1", custom_prompt="You are a careful clerk.")

        system = provider.complete.call_args[0][1]
        assert system.startswith("You are a careful clerk.")

    @pytest.mark.asyncio
    async def test_records_token_usage(self):
        provider = AsyncMock()
        provider.complete.return_value = Completion(
            content=_reply(1),
            model="test",
            token_usage=TokenUsage(prompt_tokens=100, completion_tokens=15),
        )
        usage = UsageMeter()
        agent = MicroAgent(provider, usage=usage)

        await agent({}, "Add 1")
        await agent({}, "Add 1")

        assert usage.prompt_tokens == 200
        assert usage.completion_tokens == 30

    @pytest.mark.asyncio
    async def test_failed_call_records_no_usage(self):
        usage = UsageMeter()
        agent = MicroAgent(_provider(side_effect=RuntimeError("down")), usage=usage)

        await agent({}, "Add 1")

        assert usage.calls == 0

    @pytest.mark.asyncio
    async def test_too_deep_reply_is_flagged(self):
        depth = 100_000
        content = '{"reasoning": "r", "result": ' + "[" * depth + "]" * depth + "}"
        agent = MicroAgent(_provider(content))

        ballot = await agent({}, "Add 1")

        assert isinstance(ballot, FlaggedBallot)
        assert ballot.reason == FlagReason.UNPARSEABLE
