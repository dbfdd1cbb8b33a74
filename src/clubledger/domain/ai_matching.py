"""AI-assisted matching of transactions to payables.

A text-completion provider is asked which payable a transaction settles.
Its answer is never trusted as schema-guaranteed: responses are parsed
strictly, low-confidence answers are discarded, and any provider failure
becomes a ``NoSuggestion`` so callers can fall back to heuristic matching.
"""

import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional, Sequence

import anthropic

from clubledger.database.base import Database
from clubledger.domain.auto_match import AutoMatchOptions, match_payables
from clubledger.domain.entities import Event, Payable, Transaction
from clubledger.domain.errors import NotFoundError, entity_not_found

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
SINGLE_MAX_TOKENS = 1024
BATCH_MAX_TOKENS = 4096

SINGLE_MIN_CONFIDENCE = 50
BATCH_MIN_CONFIDENCE = 75

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY = 0.5
EVENT_WINDOW_DAYS = 60
MAX_TRANSACTIONS_TO_ANALYZE = 100

CODE_FENCE = re.compile(r"```(?:json)?\s*")


class AIProviderError(Exception):
    """The completion provider could not produce an answer."""


class CompletionProvider(ABC):
    """Text-completion backend used for AI matching."""

    @abstractmethod
    def complete(self, prompt: str, max_tokens: int) -> str:
        """Return the provider's text answer to a prompt.

        Raises:
            AIProviderError: If no answer could be obtained
        """
        pass


class AnthropicCompletionProvider(CompletionProvider):
    """Completion provider backed by the Anthropic messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[anthropic.Anthropic] = None,
    ):
        """Initialize the provider.

        Args:
            api_key: API key, defaults to the ANTHROPIC_API_KEY environment variable
            model: Model name, defaults to CLUBLEDGER_AI_MODEL or DEFAULT_MODEL
            client: Preconfigured client, mainly for tests
        """
        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.model = model or os.environ.get("CLUBLEDGER_AI_MODEL", DEFAULT_MODEL)
        if client is not None:
            self.client = client
        else:
            self.client = anthropic.Anthropic(api_key=api_key) if api_key else None

    def is_available(self) -> bool:
        return self.client is not None

    def complete(self, prompt: str, max_tokens: int) -> str:
        if self.client is None:
            raise AIProviderError("AI provider not configured (set ANTHROPIC_API_KEY)")

        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise AIProviderError(str(e)) from e

        text = next((block.text for block in message.content if block.type == "text"), None)
        if text is None:
            raise AIProviderError("No text in the AI provider response")
        return text


@dataclass(frozen=True)
class AISuggestion:
    """The provider's proposed payable for a transaction."""

    transaction_id: str
    payable_id: str
    confidence: int
    reasoning: str = ""
    extracted_info: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoSuggestion:
    """No usable AI answer for a transaction."""

    transaction_id: str
    reason: str


AIResult = AISuggestion | NoSuggestion


def strip_code_fences(text: str) -> str:
    return CODE_FENCE.sub("", text)


def _confidence(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def parse_single_response(
    text: str, transaction_id: str, payable_ids: Optional[set[str]] = None
) -> AIResult:
    """Parse a single-transaction answer: one JSON object.

    Args:
        text: Raw provider answer, possibly wrapped in a code fence
        transaction_id: Transaction the answer is about
        payable_ids: IDs offered to the provider; other IDs are rejected

    Returns:
        AISuggestion, or NoSuggestion with the reason it was discarded
    """
    match = re.search(r"\{.*\}", strip_code_fences(text), re.DOTALL)
    if match is None:
        return NoSuggestion(transaction_id, "no JSON object in response")

    try:
        parsed = json.loads(match.group())
    except json.JSONDecodeError:
        return NoSuggestion(transaction_id, "malformed JSON in response")
    if not isinstance(parsed, dict):
        return NoSuggestion(transaction_id, "malformed JSON in response")

    payable_id = parsed.get("payable_id")
    if payable_id is None:
        return NoSuggestion(transaction_id, "no matching payable")

    confidence = _confidence(parsed.get("confidence"))
    if confidence is None:
        return NoSuggestion(transaction_id, "missing confidence")
    if confidence < SINGLE_MIN_CONFIDENCE:
        return NoSuggestion(transaction_id, f"confidence {confidence} below {SINGLE_MIN_CONFIDENCE}")

    payable_id = str(payable_id)
    if payable_ids is not None and payable_id not in payable_ids:
        return NoSuggestion(transaction_id, f"unknown payable {payable_id}")

    return AISuggestion(
        transaction_id=transaction_id,
        payable_id=payable_id,
        confidence=confidence,
        reasoning=str(parsed.get("reasoning") or ""),
        extracted_info=parsed.get("extracted_info") or {},
    )


def parse_batch_response(
    text: str, transaction_ids: set[str], payable_ids: Optional[set[str]] = None
) -> dict[str, AISuggestion]:
    """Parse a batch answer: a JSON array with one object per match.

    Entries for transactions that were not asked about, for unknown
    payables, or below the batch confidence floor are dropped.

    Returns:
        Suggestions keyed by transaction ID
    """
    cleaned = strip_code_fences(text)
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end <= start:
        logger.warning("No JSON array in AI batch response")
        return {}

    try:
        parsed = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError:
        logger.warning("Malformed JSON in AI batch response")
        return {}
    if not isinstance(parsed, list):
        return {}

    suggestions = {}
    for item in parsed:
        if not isinstance(item, dict):
            continue
        transaction_id = item.get("transaction_id")
        payable_id = item.get("payable_id")
        confidence = _confidence(item.get("confidence"))
        if not transaction_id or not payable_id or confidence is None:
            logger.warning("Ignoring incomplete AI match: %s", item)
            continue
        transaction_id = str(transaction_id)
        payable_id = str(payable_id)
        if confidence < BATCH_MIN_CONFIDENCE:
            logger.info("Ignoring AI match for %s with confidence %d", transaction_id, confidence)
            continue
        if transaction_id not in transaction_ids:
            logger.warning("Ignoring AI match for unknown transaction %s", transaction_id)
            continue
        if payable_ids is not None and payable_id not in payable_ids:
            logger.warning("Ignoring AI match to unknown payable %s", payable_id)
            continue
        suggestions[transaction_id] = AISuggestion(
            transaction_id=transaction_id,
            payable_id=payable_id,
            confidence=confidence,
            reasoning=str(item.get("reasoning") or ""),
            extracted_info=item.get("extracted_info") or {},
        )
    return suggestions


def _format_date(value) -> str:
    return value.isoformat() if value else "N/A"


def _event_context(event: Optional[Event]) -> str:
    if event is None:
        return ""
    return (
        "EVENT:\n"
        f"Title: {event.title}\n"
        f"Location: {event.location or 'N/A'}\n"
        f"Start: {_format_date(event.start_date)}\n"
        f"End: {_format_date(event.end_date)}\n\n"
    )


def _describe_transaction(transaction: Transaction, label: str) -> str:
    return (
        f"{label}. ID: {transaction.id}\n"
        f"   Date: {_format_date(transaction.execution_date)}\n"
        f"   Amount: {transaction.amount}\n"
        f"   Counterparty: {transaction.counterparty_name}\n"
        f"   Account: {transaction.account_number or 'N/A'}\n"
        f"   Communication: {transaction.communication or 'N/A'}"
    )


def _describe_payables(payables: Sequence[Payable]) -> str:
    return "\n\n".join(
        f"{i}. ID: {p.id}\n"
        f"   Name: {p.display_name}\n"
        f"   Amount: {p.amount_due}\n"
        f"   Date: {_format_date(p.reference_date)}"
        for i, p in enumerate(payables, start=1)
    )


NAME_RULES = (
    "Names may be inverted (Last First), upper case, carry titles (Mr, Mrs) "
    "or initials; ignore case, accents, hyphens and titles. The amount must "
    "match within 0.50. The payer's name may appear in the communication "
    "instead of the counterparty."
)


def build_single_prompt(
    transaction: Transaction, payables: Sequence[Payable], event: Optional[Event] = None
) -> str:
    return (
        "You reconcile the books of a sports club. Find the payable settled by "
        "this bank transaction.\n\n"
        f"{_event_context(event)}"
        "TRANSACTION:\n"
        f"{_describe_transaction(transaction, 'TX')}\n\n"
        "CANDIDATE PAYABLES:\n"
        f"{_describe_payables(payables)}\n\n"
        f"{NAME_RULES}\n\n"
        "Answer ONLY with a JSON object:\n"
        '{"payable_id": "<id>" or null, "confidence": 0-100, "reasoning": "...", '
        '"extracted_info": {"name": "...", "amount": 0, "keywords": []}}\n'
        f"Use payable_id null when no candidate reaches confidence {SINGLE_MIN_CONFIDENCE}."
    )


def build_batch_prompt(
    transactions: Sequence[Transaction],
    payables: Sequence[Payable],
    event: Optional[Event] = None,
) -> str:
    described = "\n\n".join(
        _describe_transaction(t, f"TX-{i}") for i, t in enumerate(transactions, start=1)
    )
    return (
        "You reconcile the books of a sports club. For each bank transaction, "
        "find the payable it settles, only when name and amount both match.\n\n"
        f"{_event_context(event)}"
        f"TRANSACTIONS ({len(transactions)}):\n{described}\n\n"
        f"CANDIDATE PAYABLES ({len(payables)}):\n{_describe_payables(payables)}\n\n"
        f"{NAME_RULES}\n\n"
        "Answer ONLY with a JSON array containing one object per match found:\n"
        '[{"transaction_id": "<id>", "payable_id": "<id>", "confidence": 0-100, '
        '"reasoning": "...", "extracted_info": {"name": "...", "amount": 0, "keywords": []}}]\n'
        f"Only include matches with confidence of at least {BATCH_MIN_CONFIDENCE}. "
        "Return [] when nothing matches."
    )


class AIMatchingService:
    """Service asking a completion provider to match transactions to payables."""

    def __init__(
        self,
        db: Database,
        provider: Optional[CompletionProvider] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize AI matching service.

        Args:
            db: Database instance
            provider: Completion provider (Anthropic by default)
            batch_size: Transactions sent per provider call
            batch_delay: Seconds to wait between provider calls
            sleep: Sleep function, replaceable in tests
        """
        self.db = db
        self.provider = provider or AnthropicCompletionProvider()
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep

    def suggest_for_transaction(
        self,
        transaction: Transaction,
        payables: Sequence[Payable],
        event: Optional[Event] = None,
    ) -> AIResult:
        """Ask which payable a single transaction settles.

        Args:
            transaction: Transaction to analyze
            payables: Candidate payables
            event: Optional event context for the prompt

        Returns:
            AISuggestion, or NoSuggestion (never raises for provider failures)
        """
        if not payables:
            return NoSuggestion(transaction.id, "no candidate payables")

        prompt = build_single_prompt(transaction, payables, event)
        try:
            answer = self.provider.complete(prompt, SINGLE_MAX_TOKENS)
        except AIProviderError as e:
            logger.warning("AI matching failed for transaction %s: %s", transaction.id, e)
            return NoSuggestion(transaction.id, f"provider failure: {e}")

        result = parse_single_response(answer, transaction.id, {p.id for p in payables})
        if isinstance(result, NoSuggestion):
            logger.info("No AI suggestion for transaction %s: %s", transaction.id, result.reason)
        return result

    def suggest_batch(
        self,
        transactions: Sequence[Transaction],
        payables: Sequence[Payable],
        event: Optional[Event] = None,
    ) -> dict[str, AIResult]:
        """Ask for matches for several transactions, a few per provider call.

        Calls are spaced by ``batch_delay`` to respect the provider's rate
        limit. A failed call yields NoSuggestion for its transactions only.

        Returns:
            A result for every transaction, keyed by transaction ID
        """
        results: dict[str, AIResult] = {}
        if not transactions:
            return results
        if not payables:
            return {t.id: NoSuggestion(t.id, "no candidate payables") for t in transactions}

        payable_ids = {p.id for p in payables}
        chunks = [
            transactions[i : i + self.batch_size]
            for i in range(0, len(transactions), self.batch_size)
        ]
        for index, chunk in enumerate(chunks):
            if index > 0:
                self._sleep(self.batch_delay)

            chunk_ids = {t.id for t in chunk}
            try:
                answer = self.provider.complete(
                    build_batch_prompt(chunk, payables, event), BATCH_MAX_TOKENS
                )
            except AIProviderError as e:
                logger.warning("AI batch %d of %d failed: %s", index + 1, len(chunks), e)
                for transaction in chunk:
                    results[transaction.id] = NoSuggestion(transaction.id, f"provider failure: {e}")
                continue

            suggestions = parse_batch_response(answer, chunk_ids, payable_ids)
            for transaction in chunk:
                results[transaction.id] = suggestions.get(
                    transaction.id, NoSuggestion(transaction.id, "no match above confidence floor")
                )

        found = sum(1 for r in results.values() if isinstance(r, AISuggestion))
        logger.info("AI batch matching: %d of %d transactions matched", found, len(transactions))
        return results

    def suggest_for_unmatched(
        self,
        event_id: str,
        options: Optional[AutoMatchOptions] = None,
        max_transactions: int = MAX_TRANSACTIONS_TO_ANALYZE,
    ) -> dict[str, AIResult]:
        """Run heuristic matching first and ask the provider about the rest.

        Only registrations the auto-matcher left without a match are offered,
        and only incoming transactions that carry no link and fall within
        sixty days of the event start are sent. Nothing is written.

        Args:
            event_id: Event whose registrations are matched
            options: Heuristic matching parameters
            max_transactions: Upper bound on transactions sent to the provider

        Returns:
            AI results keyed by transaction ID

        Raises:
            NotFoundError: If the event doesn't exist
        """
        event = self.db.get_event(event_id)
        if event is None:
            raise NotFoundError(entity_not_found("event", event_id))

        registrations = self.db.list_registrations(event_id)
        heuristic = match_payables(registrations, self.db.list_transactions(), options)

        matched_payables = {m.payable.id for m in heuristic.matched}
        matched_transactions = {m.transaction.id for m in heuristic.matched}
        payables = [
            r
            for r in registrations
            if not r.transaction_id and not r.paid and r.id not in matched_payables
        ]

        transactions = [
            t
            for t in heuristic.available_transactions
            if t.id not in matched_transactions and not t.matched_entities
        ]
        if event.start_date is not None:
            window = timedelta(days=EVENT_WINDOW_DAYS)
            transactions = [
                t
                for t in transactions
                if event.start_date - window <= t.execution_date <= event.start_date + window
            ]
        transactions = transactions[:max_transactions]

        logger.info(
            "Hybrid matching for event %s: %d payables, %d transactions sent to AI",
            event_id,
            len(payables),
            len(transactions),
        )
        if not payables or not transactions:
            return {}
        return self.suggest_batch(transactions, payables, event)
