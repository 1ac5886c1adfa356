"""NDJSON encoder for captured events and transactions."""

import json
from collections.abc import Iterable
from dataclasses import asdict
from typing import Any

from capturepy.core.models import CapturedEvent, Envelope


def to_payload(item: Envelope) -> dict[str, Any]:
    """Convert an event or transaction to a JSON-serializable dict.

    Every payload carries a ``type`` discriminator: the event kind for
    events, ``"transaction"`` for transactions.
    """
    payload = asdict(item)
    if isinstance(item, CapturedEvent):
        payload["type"] = item.kind.value
    else:
        payload["type"] = "transaction"
    return payload


def encode_ndjson(items: Iterable[Envelope]) -> str:
    """Encode events and transactions to newline-delimited JSON.

    Args:
        items: An iterable of CapturedEvent or TransactionRecord objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no items.
    """
    lines = [json.dumps(to_payload(item), default=str) for item in items]

    if not lines:
        return ""

    return "\n".join(lines) + "\n"
