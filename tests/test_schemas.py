"""Tests for maker.schemas — configuration, ballots and run records."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from maker.errors import StepFailedError, UnresolvedConsensusError
from maker.schemas.config import ConsensusStrategy, MakerConfig, ModelConfig
from maker.schemas.consensus import (
    Ballot,
    CountedBallot,
    FlaggedBallot,
    FlagReason,
    VoteTally,
)
from maker.schemas.messages import TokenUsage, UsageMeter
from maker.schemas.run import RunResult, StepRecord, StepStatus


def _model(**overrides) -> ModelConfig:
    values = {
        "provider": "gemini",
        "model": "gemini/gemini-flash-latest",
        "display_name": "Gemini Flash",
        "api_key_env": "GEMINI_API_KEY",
        "max_rpm": 500,
    }
    values.update(overrides)
    return ModelConfig(**values)


class TestMakerConfig:
    def test_defaults(self):
        config = MakerConfig()
        assert config.vote_margin_k == 10
        assert config.max_attempts_per_step == 15
        assert config.strategy == ConsensusStrategy.PARALLEL
        assert config.batch_size == 50
        assert config.early_termination is True
        assert config.max_rpm is None
        assert config.max_steps is None

    @pytest.mark.parametrize(
        "field", ["vote_margin_k", "max_attempts_per_step", "batch_size", "max_steps"],
    )
    def test_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            MakerConfig(**{field: 0})

    def test_margin_must_be_reachable(self):
        with pytest.raises(ValidationError, match="can never be reached"):
            MakerConfig(vote_margin_k=5, max_attempts_per_step=4)

    def test_margin_equal_to_ceiling_allowed(self):
        config = MakerConfig(vote_margin_k=4, max_attempts_per_step=4)
        assert config.vote_margin_k == 4

    def test_strategy_from_string(self):
        assert MakerConfig(strategy="sequential").strategy == ConsensusStrategy.SEQUENTIAL

    def test_effective_rpm(self):
        assert MakerConfig().effective_rpm(_model()) == 500
        assert MakerConfig(max_rpm=42).effective_rpm(_model()) == 42


class TestModelConfig:
    def test_rpm_must_be_positive(self):
        with pytest.raises(ValidationError):
            _model(max_rpm=0)

    def test_defaults(self):
        model = _model()
        assert model.api_base == ""
        assert model.temperature == 0.0
        assert model.max_retries == 0


class TestBallots:
    def test_discriminated_union(self):
        adapter = TypeAdapter(Ballot)
        counted = adapter.validate_python({"kind": "counted", "value": [1, 2]})
        flagged = adapter.validate_python({"kind": "flagged", "reason": "unparseable"})
        assert isinstance(counted, CountedBallot)
        assert counted.value == [1, 2]
        assert isinstance(flagged, FlaggedBallot)
        assert flagged.reason == FlagReason.UNPARSEABLE

    def test_counted_null_value(self):
        assert CountedBallot(value=None).value is None

    def test_tally_total(self):
        assert VoteTally(counts={"a": 2, "b": 3}).total == 5
        assert VoteTally().total == 0


class TestRunRecords:
    def test_step_record_defaults(self):
        record = StepRecord(index=0, instruction="Add 1")
        assert record.status == StepStatus.PENDING
        assert record.value is None

    def test_total_attempts(self):
        result = RunResult(
            task="t",
            steps=[
                StepRecord(index=0, instruction="a", attempts=10),
                StepRecord(index=1, instruction="b", attempts=12),
            ],
        )
        assert result.total_attempts == 22

    def test_result_serializes(self):
        result = RunResult(task="t", state={"current_value": {"x": 1}})
        assert '"current_value":{"x":1}' in result.model_dump_json()

    def test_token_usage_defaults_to_zero(self):
        result = RunResult(task="t")
        assert result.token_usage.prompt_tokens == 0
        assert result.total_tokens == 0


class TestUsageMeter:
    def test_accumulates(self):
        usage = UsageMeter()
        usage.record(TokenUsage(prompt_tokens=100, completion_tokens=10))
        usage.record(TokenUsage(prompt_tokens=50, completion_tokens=5))
        assert usage.calls == 2
        assert usage.total_tokens == 165
        assert usage.snapshot() == TokenUsage(prompt_tokens=150, completion_tokens=15)

    def test_unreported_usage_counts_the_call_only(self):
        usage = UsageMeter()
        usage.record(None)
        assert usage.calls == 1
        assert usage.total_tokens == 0


class TestErrors:
    def test_unresolved_message(self):
        err = UnresolvedConsensusError("Add 1", 15, 15, {'"1"': 7, '"2"': 8})
        assert str(err) == "Failed to reach consensus after 15 attempts."
        assert err.counts == {'"1"': 7, '"2"': 8}

    def test_step_failed_message(self):
        err = StepFailedError(2, "Subtract 5", "boom", {"current_value": 20})
        assert str(err) == "Step 3 ('Subtract 5') failed: boom"
        assert err.state == {"current_value": 20}
        assert err.steps == []
