"""Defensive decoding of drafting output and the drafting client."""

import json
import random

import pytest

from modules.drafting.draft_decoder import (
    DecodedDraft,
    DecodeError,
    Draft,
    close_open_structures,
    decode_draft,
    draft_or_empty,
)
import config
from modules.drafting.drafting_client import DraftingClient, RetryPolicy, build_prompt
from modules.errors import ReasonCode

from helpers import make_candidate


class TestStrategies:
    def test_direct(self):
        text = '{"title": "Weekend", "items": [{"period": "Day 1 - Morning", "activities": [{"title": "Burnham Park"}]}]}'
        outcome = decode_draft(text)
        assert outcome.strategy == "direct"
        assert outcome.draft.title == "Weekend"
        assert outcome.draft.titles() == ["Burnham Park"]

    def test_code_block(self):
        text = 'Here you go:\n```json\n{"items": [{"period": "Day 1", "activities": [{"title": "A"}]}]}\n```\nEnjoy!'
        outcome = decode_draft(text)
        assert outcome.strategy == "code_block"
        assert outcome.draft.titles() == ["A"]

    def test_braces(self):
        outcome = decode_draft('Sure! {"items": []} hope that helps')
        assert outcome.strategy == "braces"
        assert outcome.is_empty

    def test_repair(self):
        text = "{title: 'Trip', items: [{period: 'Day 1', activities: [{title: 'A', tags: [Nature, Park],},],}]}"
        outcome = decode_draft(text)
        assert outcome.strategy == "repair"
        assert outcome.draft.title == "Trip"
        assert outcome.draft.items[0].activities[0].tags == ["Nature", "Park"]

    def test_aggressive_closes_truncated_output(self):
        outcome = decode_draft("{ items: [ {title: 'A', tags: [Nature] ...")
        assert outcome.strategy == "aggressive"
        assert outcome.draft.titles() == ["A"]
        assert outcome.draft.items[0].period == "Day 1"

    def test_structural_salvage(self):
        outcome = decode_draft('I suggest title: "Mines View", then title: "Wright Park".')
        assert outcome.strategy == "structural"
        assert outcome.draft.titles() == ["Mines View", "Wright Park"]

    def test_unrecoverable_output(self):
        outcome = decode_draft("no json here at all")
        assert isinstance(outcome, DecodeError)
        assert outcome.reason_code == ReasonCode.DRAFTING_MALFORMED_OUTPUT
        assert [a.split(":")[0] for a in outcome.attempts] == [
            "direct", "code_block", "braces", "repair", "aggressive", "structural"]

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_output(self, text):
        outcome = decode_draft(text)
        assert isinstance(outcome, DecodeError)
        assert outcome.reason == "empty drafting output"


class TestOversizedOutput:
    @pytest.mark.parametrize("text", ["[" * 100_000, '{"items": ' + "[" * 5_000 + "]" * 5_000 + "}"])
    def test_deep_nesting_is_rejected_without_raising(self, text):
        outcome = decode_draft(text)
        assert isinstance(outcome, DecodeError)
        assert outcome.reason_code == ReasonCode.DRAFTING_MALFORMED_OUTPUT
        assert "levels deep" in outcome.reason
        assert outcome.attempts == []
        assert draft_or_empty(outcome).strategy == "empty"

    def test_brackets_inside_strings_do_not_count(self):
        title = "[" * 200 + "{" * 200
        outcome = decode_draft(json.dumps({"items": [{"title": title}]}))
        assert isinstance(outcome, DecodedDraft)
        assert outcome.draft.titles() == [title]

    def test_size_limit(self, monkeypatch):
        monkeypatch.setattr(config, "DRAFT_MAX_CHARS", 50)
        outcome = decode_draft(json.dumps({"items": [{"title": "x" * 60}]}))
        assert isinstance(outcome, DecodeError)
        assert outcome.reason.startswith("drafting output too large")

    def test_recursion_inside_a_strategy_is_contained(self, monkeypatch):
        monkeypatch.setattr(config, "DRAFT_MAX_DEPTH", 10**9)
        outcome = decode_draft("[" * 100_000)
        assert isinstance(outcome, DecodeError)
        assert outcome.reason == "all decode strategies failed"


class TestNormalisation:
    def test_top_level_list_becomes_one_period(self):
        outcome = decode_draft('[{"title": "A"}, {"title": "B"}]')
        assert [p.period for p in outcome.draft.items] == ["Day 1"]
        assert outcome.draft.titles() == ["A", "B"]

    def test_invalid_activities_are_dropped(self):
        text = '{"items": [{"period": "Day 2", "activities": [{"title": ""}, {"title": "X", "tags": "bad"}, 5]}]}'
        period = decode_draft(text).draft.items[0]
        assert period.period == "Day 2"
        assert [(a.title, a.tags) for a in period.activities] == [("X", [])]

    def test_close_open_structures(self):
        assert close_open_structures('{"a": ["b", "c') == '{"a": ["b", "c"]}'
        assert close_open_structures('{"a": 1,') == '{"a": 1}'


class TestDecodedDraft:
    def test_matches_known_titles(self):
        decoded = decode_draft('[{"title": "burnham park "}, {"title": "Unknown"}, {"title": "Burnham Park"}]')
        assert decoded.matches(["Burnham Park", "Wright Park"]) == ["Burnham Park"]

    def test_draft_or_empty(self):
        empty = draft_or_empty(DecodeError(reason="x"))
        assert empty.strategy == "empty"
        assert empty.is_empty
        decoded = DecodedDraft(draft=Draft(), strategy="direct")
        assert draft_or_empty(decoded) is decoded


class TestRetryPolicy:
    def test_exponential_with_cap(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=8.0, jitter=0.0)
        rng = random.Random(0)
        assert [policy.delay_for(n, rng) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_jitter_stays_in_bounds(self):
        policy = RetryPolicy(base_delay=2.0, jitter=0.25)
        rng = random.Random(42)
        for _ in range(50):
            assert 1.5 <= policy.delay_for(1, rng) <= 2.5


class TestDraftingClient:
    def test_retries_then_decodes(self):
        sleeps = []
        replies = [RuntimeError("503"), RuntimeError("503"), '[{"title": "A"}]']

        def generate(prompt):
            reply = replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply

        client = DraftingClient(generate, RetryPolicy(max_attempts=3, jitter=0.0), sleep=sleeps.append)
        outcome = client.draft("prompt")
        assert outcome.draft.titles() == ["A"]
        assert sleeps == [1.0, 2.0]

    def test_exhausted_retries_become_decode_error(self, no_sleep):
        def generate(prompt):
            raise RuntimeError("quota exceeded")

        client = DraftingClient(generate, RetryPolicy(max_attempts=2, jitter=0.0), sleep=no_sleep)
        outcome = client.draft("prompt")
        assert isinstance(outcome, DecodeError)
        assert outcome.reason == "drafting service unavailable: quota exceeded"

    @pytest.mark.parametrize("max_attempts", [0, -1])
    def test_non_positive_attempts_still_call_once(self, max_attempts, no_sleep):
        calls = []

        def generate(prompt):
            calls.append(prompt)
            raise ConnectionError("refused")

        client = DraftingClient(generate, RetryPolicy(max_attempts=max_attempts, jitter=0.0), sleep=no_sleep)
        with pytest.raises(ConnectionError, match="refused"):
            client.generate("prompt")
        assert calls == ["prompt"]

    def test_last_error_is_the_one_raised(self, no_sleep):
        errors = [TimeoutError("first"), ValueError("second")]

        def generate(prompt):
            raise errors.pop(0)

        client = DraftingClient(generate, RetryPolicy(max_attempts=2, jitter=0.0), sleep=no_sleep)
        with pytest.raises(ValueError, match="second"):
            client.generate("prompt")

    def test_prompt_lists_candidates(self):
        prompt = build_prompt("parks", [make_candidate("burnham-park", duration=120)], num_days=2,
                              interests=["nature"], weather="rainy")
        assert "2-day city trip" in prompt
        assert '"title": "Burnham Park"' in prompt
        assert '"duration": "120 min"' in prompt
        assert "INTERESTS: nature" in prompt
        assert "CURRENT WEATHER: rainy" in prompt
