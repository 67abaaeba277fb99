"""Shared helpers for reading model output.

Single Responsibility: Turn raw completion text into Python values without
ever raising on malformed output.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_json_response(content: str | None) -> Any | None:
    """Parse JSON from LLM response, handling markdown wrappers.

    Returns:
        Parsed value or None when the content is empty or not JSON
    """
    if not content:
        return None

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    # Try to extract JSON if wrapped in markdown
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0]
    elif "```" in content:
        content = content.split("```")[1].split("```")[0]

    try:
        return json.loads(content.strip())
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse JSON response: %s", e)
        return None


def parse_json_object(content: str | None) -> dict[str, Any]:
    """Like parse_json_response, but anything other than a JSON object becomes {}."""
    parsed = parse_json_response(content)
    return parsed if isinstance(parsed, dict) else {}
