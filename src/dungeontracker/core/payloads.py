"""Inbound payload validation against the JSON Schemas in ``schemas/``.

Malformed payloads are dropped with a warning. They never raise into the
host and never touch tracker state.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path

import jsonschema

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"

NEW_BATTLE = "new_battle"
ACTION_COMPLETED = "action_completed"
ACTIONS_UPDATED = "actions_updated"
CHAT_MESSAGE_RECEIVED = "chat_message_received"


def load_schema(path: Path) -> dict:
    """Load a JSON Schema file and return as dict."""
    with open(path) as f:
        return json.load(f)


@lru_cache(maxsize=None)
def schema_for(message_type: str) -> dict:
    return load_schema(SCHEMAS_DIR / f"{message_type}.json")


def validate_payload(message_type: str, data) -> bool:
    """True if *data* matches the schema for *message_type*."""
    try:
        jsonschema.validate(data, schema_for(message_type))
    except jsonschema.ValidationError as e:
        logger.warning("Dropping malformed %s payload: %s", message_type, e.message)
        return False
    return True


def parse_metadata(raw) -> dict:
    """Decode ``systemMetadata`` (a JSON string, or already a dict)."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Failed to parse systemMetadata: %s", e)
        return {}
    return value if isinstance(value, dict) else {}
