"""Anthropic Claude access for the analysis agents.

Agents answer with a single JSON value. `call_agent_model` sends one
system + user exchange, retrying once on a fallback model when the primary
one errors out, and `parse_json_reply` turns the reply text into data.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Optional

import anthropic

logger = logging.getLogger(__name__)

AGENT_MODEL = os.environ.get("SCRIPTFORGE_AGENT_MODEL", "claude-sonnet-4-5-20250929")
AGENT_MODEL_FALLBACK = os.environ.get(
    "SCRIPTFORGE_AGENT_FALLBACK_MODEL", "claude-haiku-4-5-20251001"
)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.DOTALL)


@dataclass
class ModelReply:
    """Text of a model answer and what it cost."""

    text: str
    model: str
    total_tokens: int


def get_anthropic_client() -> Optional[anthropic.Anthropic]:
    """Client for ANTHROPIC_API_KEY, or None when the key is unset."""
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        return None
    return anthropic.Anthropic(api_key=api_key)


def parse_json_reply(raw_text: str) -> Any:
    """Decode a JSON reply, tolerating a surrounding ``` fence.

    Raises json.JSONDecodeError when the text is not JSON.
    """
    content = raw_text.strip()
    fenced = _FENCE.match(content)
    if fenced:
        content = fenced.group(1).strip()
    return json.loads(content)


def call_agent_model(
    prompt: str,
    system_prompt: Optional[str] = None,
    model: Optional[str] = None,
    fallback_model: Optional[str] = None,
    max_tokens: int = 8000,
) -> ModelReply:
    """One agent exchange with Claude.

    Raises RuntimeError when no API key is configured or when both the
    primary and the fallback model fail.
    """
    client = get_anthropic_client()
    if client is None:
        raise RuntimeError("Agent model unavailable: ANTHROPIC_API_KEY is not set")

    primary = model or AGENT_MODEL
    fallback = fallback_model or AGENT_MODEL_FALLBACK
    request: dict[str, Any] = {
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_prompt:
        request["system"] = system_prompt

    last_error: Optional[Exception] = None
    for candidate in dict.fromkeys([primary, fallback]):
        try:
            response = client.messages.create(model=candidate, **request)
        except anthropic.APIError as e:
            last_error = e
            logger.warning(f"Agent model {candidate} failed: {e}")
            continue

        usage = response.usage
        return ModelReply(
            text="".join(block.text for block in response.content if block.type == "text"),
            model=candidate,
            total_tokens=usage.input_tokens + usage.output_tokens,
        )

    raise RuntimeError(f"Agent models {primary} and {fallback} failed: {last_error}")
