"""Output guardrail: moderation of agent messages before they count as delivered.

A `GuardrailGate` is built once per connection attempt for a single moderation
policy (a company/brand name or a custom configuration's name) and installed
on the transport as an output filter. The transport calls it with each
finalized agent message; the verdict is merged onto the transcript message by
id. Between "text finalized" and "verdict received" the message is PENDING,
which is not a failure.

On a failed verdict the message stays in the transcript (marked FAIL with the
category) and the gate supplies the corrective instruction used to make the
agent answer again within policy.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from voice_agents.config import ModerationConfig
from voice_agents.errors import ModerationError

if TYPE_CHECKING:
    from voice_agents.recorder import Transcript

logger = logging.getLogger(__name__)


class ModerationCategory(str, Enum):
    """Classifier output classes."""

    OFFENSIVE = "OFFENSIVE"
    OFF_BRAND = "OFF_BRAND"
    VIOLENCE = "VIOLENCE"
    NONE = "NONE"


CATEGORY_DESCRIPTIONS: dict[ModerationCategory, str] = {
    ModerationCategory.OFFENSIVE: (
        "Content that includes hate speech, discriminatory language, insults, slurs, "
        "or harassment."
    ),
    ModerationCategory.OFF_BRAND: "Content that discusses competitors in a disparaging way.",
    ModerationCategory.VIOLENCE: (
        "Content that includes explicit threats, incitement of harm, or graphic "
        "descriptions of physical injury or violence."
    ),
    ModerationCategory.NONE: "If no other classes are appropriate and the message is fine.",
}


class ModerationOutput(BaseModel):
    """Classifier answer for one message."""

    model_config = ConfigDict(populate_by_name=True)

    category: ModerationCategory = Field(
        default=ModerationCategory.NONE, alias="moderationCategory"
    )
    rationale: str = Field(default="", alias="moderationRationale")
    tested_text: str = ""
    error: str | None = None

    @property
    def tripped(self) -> bool:
        return self.category is not ModerationCategory.NONE


class GuardrailVerdict(Enum):
    PENDING = "PENDING"
    PASS = "PASS"
    FAIL = "FAIL"


@dataclass(frozen=True)
class GuardrailResult:
    """Verdict attached to a transcript message."""

    verdict: GuardrailVerdict
    category: ModerationCategory | None = None
    rationale: str | None = None
    tested_text: str | None = None

    @classmethod
    def pending(cls) -> "GuardrailResult":
        return cls(verdict=GuardrailVerdict.PENDING)

    @classmethod
    def from_output(cls, output: ModerationOutput) -> "GuardrailResult":
        return cls(
            verdict=GuardrailVerdict.FAIL if output.tripped else GuardrailVerdict.PASS,
            category=output.category,
            rationale=output.rationale or None,
            tested_text=output.tested_text or None,
        )


class ModerationEvaluator(Protocol):
    """Classifies a message under a named moderation policy."""

    async def classify(self, text: str, policy_name: str) -> ModerationOutput:
        """Classify `text`.

        Raises:
            ModerationError: If the classifier cannot produce a verdict
        """
        ...


def build_classifier_prompt(text: str, policy_name: str) -> str:
    """Instructions for the moderation classifier."""
    classes = "\n".join(f"- {c.value}: {d}" for c, d in CATEGORY_DESCRIPTIONS.items())
    return (
        "You are an expert at classifying text according to moderation policies. "
        "Consider the provided message, analyze potential classes from output_classes, "
        "and output the best classification. Output json, following the provided schema. "
        "Keep your analysis and reasoning short and to the point, maximum 2 sentences.\n\n"
        f"<info>\n- Company name: {policy_name}\n</info>\n\n"
        f"<message>\n{text}\n</message>\n\n"
        f"<output_classes>\n{classes}\n</output_classes>"
    )


_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "moderationRationale": {"type": "string"},
        "moderationCategory": {
            "type": "string",
            "enum": [c.value for c in ModerationCategory],
        },
    },
    "required": ["moderationRationale", "moderationCategory"],
    "additionalProperties": False,
}


class HttpModerationEvaluator:
    """Moderation classifier backed by a JSON-schema constrained responses endpoint."""

    def __init__(
        self, config: ModerationConfig, session: aiohttp.ClientSession | None = None
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            )
            self._owns_session = True
        return self._session

    async def classify(self, text: str, policy_name: str) -> ModerationOutput:
        payload = {
            "model": self._config.model,
            "input": [
                {
                    "type": "message",
                    "role": "user",
                    "content": build_classifier_prompt(text, policy_name),
                }
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "output_format",
                    "schema": _OUTPUT_SCHEMA,
                    "strict": True,
                }
            },
        }
        headers = {}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"

        session = await self._get_session()
        try:
            async with session.post(self._config.url, json=payload, headers=headers) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise ModerationError(f"Classifier returned HTTP {resp.status}: {body[:200]}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise ModerationError(f"Classifier request failed: {e}") from e

        output = parse_classifier_response(data)
        return output.model_copy(update={"tested_text": text})

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


def parse_classifier_response(data: dict[str, Any]) -> ModerationOutput:
    """Extract the classification from a responses-style payload.

    Accepts either a pre-parsed `output_parsed` object or the raw `output`
    message list whose `output_text` holds the JSON document.

    Raises:
        ModerationError: If no valid classification is present
    """
    try:
        if isinstance(data.get("output_parsed"), dict):
            return ModerationOutput.model_validate(data["output_parsed"])

        for item in data.get("output", []):
            if item.get("type") != "message":
                continue
            for part in item.get("content", []):
                if part.get("type") == "output_text":
                    return ModerationOutput.model_validate(json.loads(part["text"]))
    except (ValidationError, ValueError, KeyError, TypeError) as e:
        raise ModerationError(f"Malformed classifier response: {e}") from e

    raise ModerationError("Classifier response contained no output text")


class GuardrailGate:
    """Output filter applying one moderation policy to agent messages."""

    name = "moderation_guardrail"

    def __init__(
        self, policy_name: str, evaluator: ModerationEvaluator, transcript: "Transcript"
    ) -> None:
        self.policy_name = policy_name
        self._evaluator = evaluator
        self._transcript = transcript

    async def __call__(self, text: str) -> ModerationOutput:
        """Classify a finalized agent message.

        A classifier failure lets the message through; it is logged, not raised,
        so a flaky classifier never blocks the conversation.
        """
        try:
            return await self._evaluator.classify(text, self.policy_name)
        except Exception as e:
            logger.warning(
                "Guardrail classifier failed, passing message",
                extra={"policy": self.policy_name, "error": str(e)},
            )
            return ModerationOutput(tested_text=text, error="guardrail_failed")

    def mark_pending(self, item_id: str) -> bool:
        """Flag a finalized message as awaiting its verdict."""
        item = self._transcript.get(item_id)
        if item is not None and item.guardrail is not None:
            # A verdict that already arrived wins over a late finalization.
            return False
        return self._transcript.merge_guardrail(item_id, GuardrailResult.pending())

    def record_verdict(self, item_id: str, output: ModerationOutput) -> GuardrailResult:
        """Merge a verdict onto the message `item_id` (if it exists)."""
        result = GuardrailResult.from_output(output)
        if not self._transcript.merge_guardrail(item_id, result):
            logger.warning(
                "Guardrail verdict for unknown message",
                extra={"item_id": item_id, "verdict": result.verdict.value},
            )
        elif result.verdict is GuardrailVerdict.FAIL:
            logger.info(
                "Guardrail tripped",
                extra={
                    "item_id": item_id,
                    "policy": self.policy_name,
                    "category": output.category.value,
                },
            )
        return result

    def feedback_message(self, output: ModerationOutput) -> str:
        """Instruction that makes the agent replace a blocked answer."""
        return (
            "Your last answer was blocked by the moderation guardrail "
            f"({output.category.value}). Reason: {output.rationale or 'policy violation'}. "
            "Apologize briefly and respond again following the policy."
        )
