"""
Structured Reply Parsing

Language models do not reliably honor "respond only in JSON". Replies are parsed
with an ordered list of strategies:

1. whole_json     - the entire payload is a JSON object
2. fenced_json    - a ```json fenced block inside free text
3. response_field - regex-extract the raw "response" string value

If every strategy fails the raw text is returned as the reply. Parsing never
raises from parse_ai_response().
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

TRANSLATION_UNAVAILABLE = "Translation not available"

FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*\n(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)
RESPONSE_FIELD_PATTERN = re.compile(r"[\"']response[\"']\s*:\s*\"((?:[^\"\\]|\\.)*)\"", re.DOTALL)
SINGLE_QUOTED_FIELD_PATTERN = re.compile(r"[\"']response[\"']\s*:\s*'([^']+)'")


@dataclass
class StructuredReply:
    """Reply fields the response prompt asks the model for."""
    response: str
    translation: str
    teaching_points: Optional[Dict[str, Any]] = None


@dataclass
class ParseOutcome:
    """Result of parse_structured_reply: a reply plus how (or whether) it parsed."""
    reply: Optional[StructuredReply]
    strategy: str
    error: Optional[str] = None
    attempts: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class ReplyParseError(ValueError):
    """Raised by a single strategy when it cannot produce a reply."""


def _load_object(text: str) -> Dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ReplyParseError("JSON payload is not an object")
    return data


def extract_json_object(raw: str) -> Dict[str, Any]:
    """
    Parse a JSON object from model output (whole payload, then fenced block).

    Raises:
        ReplyParseError: if no JSON object can be parsed
    """
    text = (raw or "").strip()
    try:
        return _load_object(text)
    except (json.JSONDecodeError, ReplyParseError) as e:
        first_error = e

    match = FENCED_JSON_PATTERN.search(text)
    if match:
        try:
            return _load_object(match.group(1).strip())
        except (json.JSONDecodeError, ReplyParseError) as e:
            raise ReplyParseError(f"Fenced JSON block is invalid: {e}") from e

    raise ReplyParseError(f"No JSON object found: {first_error}")


def normalize_teaching_points(points: Any) -> Optional[Dict[str, Any]]:
    """Accept the 'explanations' spelling; examples must be a list or a string."""
    if not isinstance(points, dict):
        return None

    normalized: Dict[str, Any] = {}
    explanation = points.get("explanation") or points.get("explanations")
    if explanation:
        normalized["explanation"] = str(explanation)

    examples = points.get("examples")
    if isinstance(examples, str):
        examples = [examples]
    if isinstance(examples, list) and examples:
        normalized["examples"] = [str(example) for example in examples]

    if points.get("practice"):
        normalized["practice"] = str(points["practice"])

    return normalized or None


def _reply_from_object(data: Dict[str, Any]) -> StructuredReply:
    if not data.get("response") or not data.get("translation"):
        raise ReplyParseError("Missing required fields in response")
    return StructuredReply(
        response=str(data["response"]),
        translation=str(data["translation"]),
        teaching_points=normalize_teaching_points(data.get("teachingPoints")),
    )


def _parse_whole_json(raw: str) -> StructuredReply:
    try:
        return _reply_from_object(_load_object(raw.strip()))
    except json.JSONDecodeError as e:
        raise ReplyParseError(f"Not valid JSON: {e}") from e


def _parse_fenced_json(raw: str) -> StructuredReply:
    match = FENCED_JSON_PATTERN.search(raw)
    if not match:
        raise ReplyParseError("No fenced JSON block")
    try:
        return _reply_from_object(_load_object(match.group(1).strip()))
    except json.JSONDecodeError as e:
        raise ReplyParseError(f"Fenced JSON block is invalid: {e}") from e


def _parse_response_field(raw: str) -> StructuredReply:
    match = RESPONSE_FIELD_PATTERN.search(raw)
    if match:
        try:
            text = json.loads(f'"{match.group(1)}"')
        except json.JSONDecodeError:
            text = match.group(1)
    else:
        match = SINGLE_QUOTED_FIELD_PATTERN.search(raw)
        if not match:
            raise ReplyParseError("No response field found")
        text = match.group(1)

    if not text.strip():
        raise ReplyParseError("Response field is empty")
    return StructuredReply(response=text, translation=TRANSLATION_UNAVAILABLE)


STRATEGIES: List[Tuple[str, Callable[[str], StructuredReply]]] = [
    ("whole_json", _parse_whole_json),
    ("fenced_json", _parse_fenced_json),
    ("response_field", _parse_response_field),
]


def parse_structured_reply(raw: str) -> ParseOutcome:
    """
    Run the parsing strategies in order and report which one succeeded.

    Args:
        raw: Raw model output

    Returns:
        ParseOutcome; when every strategy fails, reply holds the raw text,
        strategy is "raw_text" and error describes the failures.
    """
    raw = raw or ""
    attempts: List[str] = []
    for name, strategy in STRATEGIES:
        try:
            reply = strategy(raw)
            return ParseOutcome(reply=reply, strategy=name, attempts=attempts + [name])
        except ReplyParseError as e:
            attempts.append(name)
            logger.debug(f"🔍 [ReplyParser] Strategy {name} failed: {e}")

    return ParseOutcome(
        reply=StructuredReply(response=raw, translation=TRANSLATION_UNAVAILABLE),
        strategy="raw_text",
        error="Model output did not match the reply format",
        attempts=attempts,
    )


def parse_ai_response(raw: str) -> StructuredReply:
    """Best-effort reply parsing that never raises."""
    outcome = parse_structured_reply(raw)
    if outcome.strategy != "whole_json":
        logger.warning(f"⚠️ [ReplyParser] Reply parsed with fallback strategy: {outcome.strategy}")
    return outcome.reply
