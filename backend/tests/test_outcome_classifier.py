"""
Outcome classifier tests: verdict parsing, windowing and the
UNDECIDED fallback for every failure mode.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from salestrainer.agents.states import Difficulty, SalesMode, VerdictOutcome
from salestrainer.exceptions import ClassificationError
from salestrainer.services.outcome_classifier import (
    ClassifierVerdict,
    OutcomeClassifier,
    format_transcript,
    parse_verdict,
)


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def fake_openai(content=None, side_effect=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion(content), side_effect=side_effect)
    return client


MESSAGES = [
    {"role": "assistant", "content": "Would you like to complete the purchase?"},
    {"role": "user", "content": "Yes, let's do it."},
]


class TestParseVerdict:

    def test_full_payload(self):
        v = parse_verdict(json.dumps({
            "outcome": "SALE_CONFIRMED",
            "confidence": 92,
            "reasoning": "Agreed to final close",
            "keyPhrase": "let's do it",
            "popupHeadline": "¡VENTA REALIZADA!",
            "popupMessage": "¡Felicidades!",
        }))
        assert v.outcome == VerdictOutcome.CONFIRMED
        assert v.confidence == 92
        assert v.key_phrase == "let's do it"
        assert v.popup_headline == "¡VENTA REALIZADA!"
        assert v.is_terminal

    def test_unknown_outcome_is_undecided(self):
        v = parse_verdict('{"outcome": "MAYBE", "confidence": 99}')
        assert v.outcome == VerdictOutcome.UNDECIDED
        assert not v.is_terminal

    @pytest.mark.parametrize("raw,expected", [(150, 100.0), (-5, 0.0), ("abc", 0.0), (None, 0.0), ("75", 75.0)])
    def test_confidence_is_clamped(self, raw, expected):
        v = parse_verdict(json.dumps({"outcome": "SALE_DENIED", "confidence": raw}))
        assert v.confidence == expected

    def test_missing_reasoning_gets_default(self):
        assert parse_verdict('{"outcome": "UNDECIDED"}').reasoning == "Unable to analyze"

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", ""])
    def test_unusable_content_raises(self, content):
        with pytest.raises(ClassificationError):
            parse_verdict(content)


class TestClassify:

    @pytest.mark.asyncio
    async def test_success(self):
        client = fake_openai('{"outcome": "SALE_DENIED", "confidence": 88, "reasoning": "declined"}')
        v = await OutcomeClassifier(client=client).classify(MESSAGES, SalesMode.AI_IS_SELLER)
        assert v.outcome == VerdictOutcome.DENIED
        assert v.confidence == 88

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_token_budget_per_mode(self):
        client = fake_openai('{"outcome": "UNDECIDED", "confidence": 10}')
        classifier = OutcomeClassifier(client=client)

        await classifier.classify(MESSAGES, SalesMode.AI_IS_SELLER)
        assert client.chat.completions.create.await_args.kwargs["max_tokens"] == 200

        await classifier.classify(MESSAGES, SalesMode.AI_IS_CUSTOMER, Difficulty.HARD)
        assert client.chat.completions.create.await_args.kwargs["max_tokens"] == 250

    @pytest.mark.asyncio
    async def test_network_error_is_undecided(self):
        client = fake_openai(side_effect=RuntimeError("boom"))
        v = await OutcomeClassifier(client=client).classify(MESSAGES, SalesMode.AI_IS_SELLER)
        assert v.outcome == VerdictOutcome.UNDECIDED
        assert v.confidence == 0

    @pytest.mark.asyncio
    async def test_bad_json_is_undecided(self):
        client = fake_openai("Sure! The customer bought it.")
        v = await OutcomeClassifier(client=client).classify(MESSAGES, SalesMode.AI_IS_CUSTOMER, Difficulty.EASY)
        assert v.outcome == VerdictOutcome.UNDECIDED
        assert v.confidence == 0

    @pytest.mark.asyncio
    async def test_timeout_is_undecided(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)
            return completion('{"outcome": "SALE_CONFIRMED", "confidence": 100}')

        client = MagicMock()
        client.chat.completions.create = slow
        classifier = OutcomeClassifier(client=client)
        classifier.timeout_s = 0.01
        v = await classifier.classify(MESSAGES, SalesMode.AI_IS_SELLER)
        assert v.outcome == VerdictOutcome.UNDECIDED
        assert "timed out" in v.reasoning

    @pytest.mark.asyncio
    async def test_unconfigured_client_is_undecided(self):
        OutcomeClassifier._async_client = None
        v = await OutcomeClassifier().classify(MESSAGES, SalesMode.AI_IS_SELLER)
        assert v == ClassifierVerdict.undecided("Classifier not configured")

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_call(self):
        client = fake_openai('{"outcome": "SALE_CONFIRMED", "confidence": 100}')
        v = await OutcomeClassifier(client=client).classify([], SalesMode.AI_IS_SELLER)
        assert v.outcome == VerdictOutcome.UNDECIDED
        client.chat.completions.create.assert_not_awaited()


class TestBuildRequest:

    def test_seller_window_is_last_ten(self):
        messages = [{"role": "user", "content": f"m{i}"} for i in range(20)]
        request = OutcomeClassifier(client=MagicMock()).build_request(messages, SalesMode.AI_IS_SELLER)
        body = request[1]["content"]
        assert "USER: m10" in body and "USER: m19" in body
        assert "USER: m9\n" not in body

    def test_customer_window_and_difficulty(self):
        messages = [{"role": "assistant", "content": f"m{i}"} for i in range(20)]
        request = OutcomeClassifier(client=MagicMock()).build_request(
            messages, SalesMode.AI_IS_CUSTOMER, Difficulty.EXPERT
        )
        assert "DIFFICULTY LEVEL: EXPERT" in request[0]["content"]
        assert "ASSISTANT: m8" in request[1]["content"]
        assert "ASSISTANT: m7\n" not in request[1]["content"]

    def test_seller_prompt_carries_localized_examples(self):
        system = OutcomeClassifier(client=MagicMock()).build_request(MESSAGES, SalesMode.AI_IS_SELLER)[0]["content"]
        assert "¡VENTA REALIZADA!" in system
        assert "VENTE CONCLUE!" in system
        assert "VERKAUF ABGESCHLOSSEN!" in system

    def test_format_transcript(self):
        assert format_transcript(MESSAGES) == (
            "ASSISTANT: Would you like to complete the purchase?\nUSER: Yes, let's do it."
        )
