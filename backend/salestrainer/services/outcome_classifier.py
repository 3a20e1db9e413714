# backend/salestrainer/services/outcome_classifier.py
"""
Outcome classifier client.

Sends a windowed transcript to a chat-completion model constrained to JSON
and parses a three-state verdict (confirmed / denied / undecided) with a
0-100 confidence and localized popup text.

Any failure (no key, network error, timeout, unparseable JSON) resolves to
UNDECIDED with confidence 0. Nothing raised here reaches the caller.
"""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from salestrainer.agents.states import Difficulty, SalesMode, VerdictOutcome
from salestrainer.config import settings
from salestrainer.exceptions import ClassificationError
from salestrainer.utils.logger import logger

_OUTCOME_ALIASES = {
    "SALE_CONFIRMED": VerdictOutcome.CONFIRMED,
    "CONFIRMED": VerdictOutcome.CONFIRMED,
    "SALE_DENIED": VerdictOutcome.DENIED,
    "DENIED": VerdictOutcome.DENIED,
    "UNDECIDED": VerdictOutcome.UNDECIDED,
}


class ClassifierVerdict(BaseModel):
    """Result of one classification call."""
    model_config = ConfigDict(populate_by_name=True)

    outcome: VerdictOutcome = VerdictOutcome.UNDECIDED
    confidence: float = 0.0
    reasoning: str = Field(default="", validate_default=True)
    key_phrase: Optional[str] = Field(default=None, alias="keyPhrase")
    popup_headline: Optional[str] = Field(default=None, alias="popupHeadline")
    popup_message: Optional[str] = Field(default=None, alias="popupMessage")

    @field_validator("outcome", mode="before")
    @classmethod
    def _normalize_outcome(cls, value: Any) -> VerdictOutcome:
        if isinstance(value, VerdictOutcome):
            return value
        key = str(value or "").strip().upper().replace(" ", "_")
        return _OUTCOME_ALIASES.get(key, VerdictOutcome.UNDECIDED)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            conf = float(value)
        except (TypeError, ValueError):
            return 0.0
        if conf != conf:  # NaN
            return 0.0
        return max(0.0, min(100.0, conf))

    @field_validator("reasoning", mode="before")
    @classmethod
    def _default_reasoning(cls, value: Any) -> str:
        return str(value) if value else "Unable to analyze"

    @classmethod
    def undecided(cls, reasoning: str) -> "ClassifierVerdict":
        return cls(outcome=VerdictOutcome.UNDECIDED, confidence=0, reasoning=reasoning)

    @property
    def is_terminal(self) -> bool:
        return self.outcome in (VerdictOutcome.CONFIRMED, VerdictOutcome.DENIED)


def parse_verdict(content: str) -> ClassifierVerdict:
    """Parse the model's JSON body. Raises ClassificationError on anything unusable."""
    try:
        data = json.loads(content or "")
    except (TypeError, json.JSONDecodeError) as e:
        raise ClassificationError(f"classifier returned non-JSON content: {e}") from e

    if not isinstance(data, dict):
        raise ClassificationError("classifier JSON is not an object")

    try:
        return ClassifierVerdict.model_validate(data)
    except ValidationError as e:
        raise ClassificationError(f"classifier JSON failed validation: {e}") from e


# =============================================================================
# PROMPTS
# =============================================================================

SELLER_MODE_PROMPT = """You analyze a sales conversation in which the ASSISTANT is the salesperson and the USER is the customer. Decide whether the customer has COMPLETED a purchase commitment.

Intermediate steps are NOT a sale. Return UNDECIDED when:
- the customer agreed to reserve or hold the item but the salesperson is still asking follow-up questions
- the customer picked a colour, variant or quantity while details are still being confirmed
- the customer answered "yes" to a question that was not the final closing question
- the salesperson asked "would you like to complete the purchase?" and is still waiting for the answer

Return SALE_CONFIRMED only when ALL of these hold:
1. the salesperson asked the FINAL closing question (complete the purchase, finalize the order)
2. the customer clearly agreed to that final question
3. the transaction is done, not still in progress
4. no further question from the salesperson follows the customer's agreement

Return SALE_DENIED when:
- the customer explicitly declines (no thanks, not interested, I'll pass) or says they don't want the product
- the customer leaves without buying (bye, goodbye, I'm done, end session, I have to go)
Hesitation alone is not a denial.

Detect the customer's language and write "popupHeadline" and "popupMessage" in it.
Examples for a sale:
- English: "SALE MADE!" / "Congratulations! You closed the deal!"
- Spanish: "¡VENTA REALIZADA!" / "¡Felicidades! ¡Cerraste el trato!"
- French: "VENTE CONCLUE!" / "Félicitations! Vous avez conclu la vente!"
- German: "VERKAUF ABGESCHLOSSEN!" / "Herzlichen Glückwunsch! Sie haben den Deal abgeschlossen!"
Examples for a denial:
- English: "SALE DENIED" / "The customer declined. Better luck next time!"
- Spanish: "VENTA RECHAZADA" / "El cliente declinó. ¡Mejor suerte la próxima vez!"

Return ONLY a JSON object:
{"outcome": "SALE_CONFIRMED" | "SALE_DENIED" | "UNDECIDED", "confidence": <0-100>, "reasoning": "<brief>", "keyPhrase": "<customer phrase that decided it>", "popupHeadline": "<localized>", "popupMessage": "<localized>"}

Be conservative: if the salesperson asks anything after the customer says yes, the answer is UNDECIDED."""

CUSTOMER_MODE_PROMPT = """You analyze a "Sell Me a Pen" training conversation in which the USER is the salesperson and the ASSISTANT plays the customer.

DIFFICULTY LEVEL: {difficulty}
- Easy: the customer is friendly and buys easily
- Medium: the customer needs moderate convincing
- Hard: the customer is skeptical and needs an excellent pitch
- Expert: the customer is extremely tough

Decide whether the ASSISTANT (customer) has made a FINAL decision.

SALE_CONFIRMED: the customer clearly and finally agrees to buy ("Okay, I'll take it", "You convinced me", "I'll buy it", "Deal").
SALE_DENIED: the customer clearly and finally refuses after hearing the pitch ("No thanks", "I'm not interested", "Sorry, no"),
or the salesperson (USER) abandons the pitch or ends the conversation without a sale.
UNDECIDED: the customer is still asking questions, raising objections or considering. Objections are opportunities, not denials.

Write "popupHeadline" and "popupMessage" in the language the USER speaks.

Return ONLY a JSON object:
{{"outcome": "SALE_CONFIRMED" | "SALE_DENIED" | "UNDECIDED", "confidence": <0-100>, "reasoning": "<brief>", "keyPhrase": "<assistant phrase that decided it>", "popupHeadline": "<localized>", "popupMessage": "<localized>"}}"""


def format_transcript(messages: Sequence[Dict[str, str]]) -> str:
    return "\n".join(
        f"{(m.get('role') or '').upper()}: {m.get('content') or ''}" for m in messages
    )


class OutcomeClassifier:
    """Stateless wrapper around the classification model."""

    SELLER_WINDOW = 10
    CUSTOMER_WINDOW = 12

    # Class-level async OpenAI client shared by all sessions
    _async_client: Optional[Any] = None

    def __init__(self, client: Optional[Any] = None):
        self._client = client
        self.model = (settings.CLASSIFIER_MODEL or "gpt-4o-mini").strip()
        self.temperature = settings.CLASSIFIER_TEMPERATURE
        self.seller_max_tokens = settings.CLASSIFIER_SELLER_MAX_TOKENS
        self.max_tokens = settings.CLASSIFIER_MAX_TOKENS
        self.timeout_s = settings.CLASSIFIER_TIMEOUT_SECONDS

    @classmethod
    def get_async_client(cls) -> Optional[Any]:
        """Get or create the shared AsyncOpenAI client."""
        if cls._async_client is None and settings.OPENAI_API_KEY:
            cls._async_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return cls._async_client

    @classmethod
    async def close_client(cls) -> None:
        if cls._async_client is not None:
            await cls._async_client.close()
            cls._async_client = None

    def max_tokens_for(self, mode: SalesMode) -> int:
        return self.max_tokens if mode == SalesMode.AI_IS_CUSTOMER else self.seller_max_tokens

    def build_request(
        self,
        messages: Sequence[Dict[str, str]],
        mode: SalesMode,
        difficulty: Optional[Difficulty] = None,
    ) -> List[Dict[str, str]]:
        if mode == SalesMode.AI_IS_CUSTOMER:
            level = (difficulty or Difficulty.MEDIUM).value.upper()
            system_prompt = CUSTOMER_MODE_PROMPT.format(difficulty=level)
            window = list(messages)[-self.CUSTOMER_WINDOW:]
            user_prompt = (
                "Analyze this sales conversation (USER is selling, ASSISTANT is customer):\n\n"
                + format_transcript(window)
            )
        else:
            system_prompt = SELLER_MODE_PROMPT
            window = list(messages)[-self.SELLER_WINDOW:]
            user_prompt = "Analyze this sales conversation:\n\n" + format_transcript(window)

        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    async def classify(
        self,
        messages: Sequence[Dict[str, str]],
        mode: SalesMode,
        difficulty: Optional[Difficulty] = None,
    ) -> ClassifierVerdict:
        client = self._client or self.get_async_client()
        if client is None:
            logger.warning("[CLASSIFIER] No OpenAI client configured - defaulting to UNDECIDED")
            return ClassifierVerdict.undecided("Classifier not configured")

        if not messages:
            return ClassifierVerdict.undecided("Empty transcript")

        started = time.time()
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    messages=self.build_request(messages, mode, difficulty),
                    response_format={"type": "json_object"},
                    temperature=self.temperature,
                    max_tokens=self.max_tokens_for(mode),
                ),
                timeout=self.timeout_s,
            )
            content = response.choices[0].message.content or "{}"
            verdict = parse_verdict(content)
        except asyncio.TimeoutError:
            elapsed = (time.time() - started) * 1000
            logger.warning(f"[CLASSIFIER] Timed out after {elapsed:.0f}ms - defaulting to UNDECIDED")
            return ClassifierVerdict.undecided("Analysis timed out - defaulting to undecided")
        except ClassificationError as e:
            logger.error(f"[CLASSIFIER] Unparseable verdict: {e}")
            return ClassifierVerdict.undecided("Analysis error - defaulting to undecided")
        except Exception as e:
            logger.error(f"[CLASSIFIER] Classification call failed: {e}")
            return ClassifierVerdict.undecided("Analysis error - defaulting to undecided")

        elapsed = (time.time() - started) * 1000
        logger.info(
            f"[CLASSIFIER] mode={mode.value} outcome={verdict.outcome.value} "
            f"confidence={verdict.confidence:.0f} in {elapsed:.0f}ms"
        )
        return verdict
