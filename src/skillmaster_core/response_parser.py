"""Turns raw AI completion text into validated values.

Nothing in here raises on bad model output. Malformed text degrades to an
empty list or a fixed fallback reply, and the reason is returned as a
warning for the caller to log or surface.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from loguru import logger
from pydantic import BaseModel, StrictStr, TypeAdapter, ValidationError, field_validator

FALLBACK_REPLY = "I couldn't generate a response, please try again"

StringList = TypeAdapter(list[StrictStr])

_FENCED_ARRAY = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL | re.IGNORECASE)
_FENCED_CODE = re.compile(r"```([\w+#.-]*)[ \t]*\n(.*?)```", re.DOTALL)


class ChatReply(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reply is empty")
        return value


@dataclass(frozen=True)
class ParsedList:
    items: list[str]
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedReply:
    text: str
    warnings: list[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return bool(self.warnings)


def parse_list(raw_text: object) -> ParsedList:
    if not isinstance(raw_text, str) or not raw_text.strip():
        return _degrade("empty response")

    text = raw_text.strip()
    try:
        decoded = json.loads(text)
    except (ValueError, RecursionError):
        embedded = _extract_array(text)
        if embedded is None:
            return _degrade("response is not a JSON array")
        try:
            decoded = json.loads(embedded)
        except (ValueError, RecursionError):
            return _degrade("embedded array is not valid JSON")

    try:
        items = StringList.validate_python(decoded)
    except ValidationError as ex:
        return _degrade(f"expected a JSON array of strings ({ex.error_count()} validation error(s))")
    return ParsedList(items=list(items))


def parse_reply(raw_text: object) -> ParsedReply:
    try:
        reply = ChatReply.model_validate({"text": raw_text})
    except ValidationError:
        logger.warning("Malformed AI reply: empty or missing text, using fallback message")
        return ParsedReply(text=FALLBACK_REPLY, warnings=["empty reply"])
    return ParsedReply(text=reply.text)


def extract_code_block(text: str) -> dict | None:
    """First fenced code block in a reply, as a message payload."""
    m = _FENCED_CODE.search(text)
    if m is None:
        return None
    code = m.group(2).rstrip("\n")
    if not code.strip():
        return None
    return {"language": m.group(1) or None, "code": code}


def _degrade(reason: str) -> ParsedList:
    logger.warning(f"Malformed AI list output: {reason}; using empty list")
    return ParsedList(items=[], warnings=[reason])


def _extract_array(text: str) -> str | None:
    m = _FENCED_ARRAY.search(text)
    if m:
        return m.group(1).strip()
    return _balanced_array(text)


def _balanced_array(text: str) -> str | None:
    """First balanced top-level [...] span, ignoring brackets inside strings."""
    start = text.find("[")
    if start < 0:
        return None

    depth = 0
    in_str = False
    esc = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
        else:
            if ch == '"':
                in_str = True
            elif ch == "[":
                depth += 1
            elif ch == "]":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
    return None
