import json
import re
from typing import Any

_FENCED_JSON = re.compile(r'```(?:json)?\s*\n([\s\S]*?)\n\s*```')
_WHITESPACE = re.compile(r'\s+')


def extract_json_block(text: str) -> str:
    """
    Return the body of the first fenced code block (```json ... ```) in *text*.
    Falls back to the whole text, stripped, when no fence is present.
    """
    if not text:
        return ""
    match = _FENCED_JSON.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_json_response(text: str) -> Any:
    """Parse the JSON answer of a text model. Raises ``json.JSONDecodeError`` on garbage."""
    return json.loads(extract_json_block(text))


def slugify_name(name: str) -> str:
    """Lowercase and collapse every whitespace run to a single hyphen."""
    return _WHITESPACE.sub('-', (name or '').lower())
