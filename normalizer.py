"""Turn loosely shaped backend payloads into ordered record lists.

The legacy backend answers with several envelope styles depending on the
endpoint and its version::

    {"success": true, "data": [...]}      envelope with an array
    {"success": true, "data": {...}}      envelope with a single object
    [...]                                 bare array
    {...}                                 bare object
    {"result": true, "message": [...]}    legacy envelope
    {"result": false, "error": "..."}     legacy in-band error

A mapping without ``data`` is wrapped as a one-element list, except for the
two legacy bodies above: ``message`` is unwrapped and an in-band error
normalizes to an empty list.

``classify`` names the shape, ``normalize`` turns any of them into a list.
Nothing in this module raises on malformed input.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Iterable, Optional

from logger import get_logger

logger = get_logger("normalizer")

RELOGIN_MARKERS = ("coach not found", "re-login")


class ResponseShape(str, Enum):
    ENVELOPE_ARRAY = "envelope_array"
    ENVELOPE_OBJECT = "envelope_object"
    BARE_ARRAY = "bare_array"
    BARE_OBJECT = "bare_object"
    LEGACY_ARRAY = "legacy_array"
    LEGACY_OBJECT = "legacy_object"
    LEGACY_ERROR = "legacy_error"
    EMPTY = "empty"


def classify(raw: Any) -> ResponseShape:
    """Return the envelope shape of ``raw`` by explicit inspection."""
    if isinstance(raw, list):
        return ResponseShape.BARE_ARRAY
    if not isinstance(raw, Mapping):
        return ResponseShape.EMPTY
    if "data" in raw:
        if isinstance(raw["data"], list):
            return ResponseShape.ENVELOPE_ARRAY
        return ResponseShape.ENVELOPE_OBJECT
    if raw.get("result") is False and raw.get("error"):
        return ResponseShape.LEGACY_ERROR
    if raw.get("result") is True and "message" in raw:
        message = raw["message"]
        if isinstance(message, list):
            return ResponseShape.LEGACY_ARRAY
        if isinstance(message, Mapping):
            return ResponseShape.LEGACY_OBJECT
    return ResponseShape.BARE_OBJECT


def normalize(raw: Any) -> list:
    """Return the records carried by ``raw`` in backend order.

    ``data`` wrappers are unwrapped at any depth, so
    ``normalize({"success": True, "data": x}) == normalize(x)``.
    Scalars and ``None`` give an empty list.
    """
    seen = set()
    while True:
        shape = classify(raw)
        if shape in (ResponseShape.ENVELOPE_ARRAY, ResponseShape.ENVELOPE_OBJECT):
            if id(raw) in seen:
                # self-referencing envelope
                return []
            seen.add(id(raw))
            raw = raw["data"]
            continue
        break

    if shape is ResponseShape.BARE_ARRAY:
        return list(raw)
    if shape is ResponseShape.BARE_OBJECT:
        return [raw]
    if shape is ResponseShape.LEGACY_ARRAY:
        return list(raw["message"])
    if shape is ResponseShape.LEGACY_OBJECT:
        return [raw["message"]]
    if shape is ResponseShape.LEGACY_ERROR:
        logger.warning("API error: %s", raw["error"])
        return []
    if raw is not None:
        logger.debug("Response did not match a known shape: %r", type(raw).__name__)
    return []


def backend_error(raw: Any) -> Optional[str]:
    """Return the in-band error text of a ``{result: false, error}`` body."""
    if classify(raw) is ResponseShape.LEGACY_ERROR:
        return str(raw["error"])
    if isinstance(raw, Mapping) and raw.get("success") is False and raw.get("error"):
        return str(raw["error"])
    return None


def requires_relogin(raw: Any) -> bool:
    """True when the backend asks the coach to sign in again."""
    error = backend_error(raw)
    if not error:
        return False
    lowered = error.lower()
    return any(marker in lowered for marker in RELOGIN_MARKERS)


def is_success(raw: Any) -> bool:
    """Read the success flag of an envelope; bare payloads count as success."""
    if isinstance(raw, Mapping):
        if "success" in raw:
            return raw["success"] is True
        if "result" in raw:
            return raw["result"] is True
        return not raw.get("error")
    return isinstance(raw, list)


def find_record(records: Iterable[Any], **match: Any) -> Optional[Mapping]:
    """First record whose fields equal ``match``, else the first record."""
    first = None
    for record in records:
        if not isinstance(record, Mapping):
            continue
        if first is None:
            first = record
        if all(record.get(key) == value for key, value in match.items()):
            return record
    return first
