"""
Batch response parsing for the classifier.

Model output is untrusted. ``parse_batch_response`` scans the text for the
first well-formed JSON object matching ``{"items": [{"id", "label",
"reason"}]}`` and returns a tagged result:

- ParseOk        - decisions keyed by item id
- ParseFailure   - no JSON object could be decoded at all
- SchemaInvalid  - JSON objects were found but none matched the schema
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from inboxq.observability.logging import get_logger

logger = get_logger(__name__)

_FENCE_OPEN = re.compile(r"```(?:json)?\s*")
_TRAILING_COMMA = re.compile(r",\s*([\}\]])")


class ItemDecision(BaseModel):
    id: str
    label: str | None = None
    reason: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("label", "reason", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class BatchResponse(BaseModel):
    items: list[ItemDecision]


@dataclass(frozen=True)
class ParseOk:
    decisions: dict[str, ItemDecision]


@dataclass(frozen=True)
class ParseFailure:
    error: str


@dataclass(frozen=True)
class SchemaInvalid:
    error: str


ParseOutcome = ParseOk | ParseFailure | SchemaInvalid


def _iter_json_objects(text: str):
    """Yield every JSON object that decodes starting at a '{' in ``text``, in order."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            obj, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(obj, dict):
                yield obj
        index = text.find("{", index + 1)


def parse_batch_response(text: str) -> ParseOutcome:
    """
    Parse a classifier response into item decisions.

    Duplicate ids keep their first decision.

    Side Effects:
        None (pure function, logs at debug level only)
    """
    if not text or not text.strip():
        return ParseFailure("empty response")

    cleaned = _FENCE_OPEN.sub("", text).replace("```", "").strip()
    candidates = [cleaned]
    repaired = _TRAILING_COMMA.sub(r"\1", cleaned)
    if repaired != cleaned:
        candidates.append(repaired)

    saw_object = False
    last_error = "no JSON object found"
    for candidate in candidates:
        for obj in _iter_json_objects(candidate):
            saw_object = True
            try:
                response = BatchResponse.model_validate(obj)
            except ValidationError as e:
                last_error = f"{e.error_count()} schema error(s): {e.errors()[0]['msg']}"
                continue

            decisions: dict[str, ItemDecision] = {}
            for decision in response.items:
                decisions.setdefault(decision.id, decision)
            return ParseOk(decisions)

    if saw_object:
        logger.debug("Classifier response had JSON but no object matched the schema: %s", last_error)
        return SchemaInvalid(last_error)
    return ParseFailure(last_error)
