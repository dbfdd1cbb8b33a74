"""Tests for AI-assisted matching."""

import json
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from clubledger.domain.ai_matching import (
    AIMatchingService,
    AIProviderError,
    AISuggestion,
    AnthropicCompletionProvider,
    NoSuggestion,
    build_single_prompt,
    parse_batch_response,
    parse_single_response,
)
from clubledger.domain.entities import Registration, Transaction
from clubledger.domain.errors import NotFoundError

from conftest import FakeProvider


def _transaction(id="t1", amount="7.00", counterparty="DUPONT JEAN"):
    return Transaction(
        id=id,
        amount=Decimal(amount),
        execution_date=date(2024, 3, 2),
        counterparty_name=counterparty,
        communication="Sortie Zeeland",
    )


def _registration(id="r1", first_name="Jean", last_name="Dupont"):
    return Registration(
        id=id,
        event_id="ev1",
        first_name=first_name,
        last_name=last_name,
        price=Decimal("7.00"),
        registration_date=date(2024, 3, 1),
    )


class TestParseSingleResponse:
    """Tests for single-transaction answers."""

    def test_fenced_json(self):
        text = '```json\n{"payable_id": "r1", "confidence": 85, "reasoning": "same name",' \
            ' "extracted_info": {"name": "Jean Dupont"}}\n```'

        result = parse_single_response(text, "t1", {"r1"})

        assert isinstance(result, AISuggestion)
        assert result.payable_id == "r1"
        assert result.confidence == 85
        assert result.reasoning == "same name"
        assert result.extracted_info == {"name": "Jean Dupont"}

    def test_null_payable(self):
        result = parse_single_response('{"payable_id": null, "confidence": 0}', "t1")
        assert isinstance(result, NoSuggestion)
        assert result.reason == "no matching payable"

    def test_below_floor(self):
        result = parse_single_response('{"payable_id": "r1", "confidence": 49}', "t1")
        assert isinstance(result, NoSuggestion)

    def test_floor_is_inclusive(self):
        result = parse_single_response('{"payable_id": "r1", "confidence": 50}', "t1")
        assert isinstance(result, AISuggestion)

    @pytest.mark.parametrize(
        "text",
        [
            "I could not find a match.",
            "{payable_id: r1}",
            '{"payable_id": "r1"}',
            '{"payable_id": "r1", "confidence": "high"}',
        ],
    )
    def test_unusable_answers(self, text):
        assert isinstance(parse_single_response(text, "t1"), NoSuggestion)

    def test_unknown_payable(self):
        result = parse_single_response('{"payable_id": "r9", "confidence": 90}', "t1", {"r1"})
        assert isinstance(result, NoSuggestion)
        assert "r9" in result.reason


class TestParseBatchResponse:
    """Tests for batch answers."""

    def test_filters_entries(self):
        text = "```json\n" + json.dumps(
            [
                {"transaction_id": "t1", "payable_id": "r1", "confidence": 90, "reasoning": "name"},
                {"transaction_id": "t2", "payable_id": "r2", "confidence": 70},
                {"transaction_id": "t9", "payable_id": "r1", "confidence": 95},
                {"transaction_id": "t3", "payable_id": "r9", "confidence": 95},
                {"transaction_id": "t3"},
                "garbage",
            ]
        ) + "\n```"

        result = parse_batch_response(text, {"t1", "t2", "t3"}, {"r1", "r2"})

        assert list(result) == ["t1"]
        assert result["t1"].confidence == 90

    def test_floor_is_inclusive(self):
        text = '[{"transaction_id": "t1", "payable_id": "r1", "confidence": 75}]'
        assert "t1" in parse_batch_response(text, {"t1"})

    @pytest.mark.parametrize("text", ["", "no matches", "[{broken", '{"not": "an array"}'])
    def test_unusable_answers(self, text):
        assert parse_batch_response(text, {"t1"}) == {}


class TestAnthropicProvider:
    """Tests for the Anthropic-backed provider."""

    def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        provider = AnthropicCompletionProvider()

        assert provider.is_available() is False
        with pytest.raises(AIProviderError):
            provider.complete("prompt", 100)

    def test_complete(self):
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(content=[SimpleNamespace(type="text", text='{"payable_id": null}')])

        client = SimpleNamespace(messages=SimpleNamespace(create=create))
        provider = AnthropicCompletionProvider(model="test-model", client=client)

        assert provider.complete("prompt", 100) == '{"payable_id": null}'
        assert calls[0]["model"] == "test-model"
        assert calls[0]["max_tokens"] == 100
        assert calls[0]["messages"] == [{"role": "user", "content": "prompt"}]

    def test_empty_response(self):
        client = SimpleNamespace(
            messages=SimpleNamespace(create=lambda **kwargs: SimpleNamespace(content=[]))
        )
        provider = AnthropicCompletionProvider(client=client)

        with pytest.raises(AIProviderError):
            provider.complete("prompt", 100)

    def test_skips_non_text_blocks(self):
        content = [
            SimpleNamespace(type="thinking", thinking="comparing names"),
            SimpleNamespace(type="text", text="[]"),
        ]
        client = SimpleNamespace(
            messages=SimpleNamespace(create=lambda **kwargs: SimpleNamespace(content=content))
        )

        assert AnthropicCompletionProvider(client=client).complete("prompt", 100) == "[]"

    def test_no_text_block_is_no_suggestion(self, temp_db):
        content = [SimpleNamespace(type="tool_use", name="lookup", input={})]
        client = SimpleNamespace(
            messages=SimpleNamespace(create=lambda **kwargs: SimpleNamespace(content=content))
        )
        service = AIMatchingService(temp_db, provider=AnthropicCompletionProvider(client=client))

        result = service.suggest_for_transaction(_transaction(), [_registration()])

        assert isinstance(result, NoSuggestion)
        assert "No text" in result.reason

    def test_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("CLUBLEDGER_AI_MODEL", "other-model")
        provider = AnthropicCompletionProvider(client=SimpleNamespace())
        assert provider.model == "other-model"


class TestAIMatchingService:
    """Tests for AIMatchingService."""

    def test_single_suggestion(self, temp_db):
        provider = FakeProvider(['{"payable_id": "r1", "confidence": 88, "reasoning": "inverted name"}'])
        service = AIMatchingService(temp_db, provider=provider)

        result = service.suggest_for_transaction(_transaction(), [_registration()])

        assert isinstance(result, AISuggestion)
        assert result.confidence == 88
        assert "DUPONT JEAN" in provider.prompts[0]
        assert "r1" in provider.prompts[0]

    def test_provider_failure_is_no_suggestion(self, temp_db):
        service = AIMatchingService(temp_db, provider=FakeProvider(error="401 unauthorized"))

        result = service.suggest_for_transaction(_transaction(), [_registration()])

        assert isinstance(result, NoSuggestion)
        assert "401 unauthorized" in result.reason

    def test_no_candidates(self, temp_db, fake_provider):
        service = AIMatchingService(temp_db, provider=fake_provider)

        result = service.suggest_for_transaction(_transaction(), [])

        assert isinstance(result, NoSuggestion)
        assert fake_provider.prompts == []

    def test_batches_of_three_with_delay(self, ai_service, fake_provider):
        transactions = [_transaction(id=f"t{i}") for i in range(1, 5)]
        fake_provider.answers = [
            '[{"transaction_id": "t2", "payable_id": "r1", "confidence": 90}]',
            "[]",
        ]

        results = ai_service.suggest_batch(transactions, [_registration()])

        assert len(fake_provider.prompts) == 2
        assert ai_service.sleeps == [0.5]
        assert set(results) == {"t1", "t2", "t3", "t4"}
        assert isinstance(results["t2"], AISuggestion)
        assert isinstance(results["t4"], NoSuggestion)

    def test_batch_failure_only_affects_its_chunk(self, temp_db):
        class FailingSecondCall(FakeProvider):
            def complete(self, prompt, max_tokens):
                self.prompts.append(prompt)
                if len(self.prompts) == 2:
                    raise AIProviderError("timeout")
                return '[{"transaction_id": "t1", "payable_id": "r1", "confidence": 90}]'

        service = AIMatchingService(temp_db, provider=FailingSecondCall(), sleep=lambda s: None)
        transactions = [_transaction(id=f"t{i}") for i in range(1, 5)]

        results = service.suggest_batch(transactions, [_registration()])

        assert isinstance(results["t1"], AISuggestion)
        assert results["t4"].reason == "provider failure: timeout"

    def test_suggest_for_unmatched(self, temp_db, ai_service, fake_provider, sample_event, sample_registrations):
        dupont, lambert, martin = sample_registrations
        temp_db.create_transaction(
            amount=Decimal("7.00"), execution_date=date(2024, 3, 2), counterparty_name="DUPONT JEAN"
        )
        unclear_id = temp_db.create_transaction(
            amount=Decimal("30.00"), execution_date=date(2024, 3, 4), counterparty_name="M. L. MARTIN"
        )
        old_id = temp_db.create_transaction(
            amount=Decimal("30.00"), execution_date=date(2023, 1, 4), counterparty_name="M. L. MARTIN"
        )
        fake_provider.answers = [
            json.dumps(
                [{"transaction_id": unclear_id, "payable_id": martin.id, "confidence": 80}]
            )
        ]

        results = ai_service.suggest_for_unmatched(sample_event.id)

        assert list(results) == [unclear_id]
        assert results[unclear_id].payable_id == martin.id
        prompt = fake_provider.prompts[0]
        assert old_id not in prompt
        assert dupont.id not in prompt
        assert lambert.id in prompt
        assert temp_db.get_registration(martin.id).transaction_id is None

    def test_suggest_for_unmatched_nothing_left(self, temp_db, ai_service, fake_provider, sample_event, sample_registrations):
        results = ai_service.suggest_for_unmatched(sample_event.id)

        assert results == {}
        assert fake_provider.prompts == []

    def test_suggest_for_unmatched_unknown_event(self, ai_service):
        with pytest.raises(NotFoundError):
            ai_service.suggest_for_unmatched("missing")


def test_single_prompt_mentions_event():
    prompt = build_single_prompt(_transaction(), [_registration()])
    assert "TRANSACTION:" in prompt
    assert "EVENT:" not in prompt
