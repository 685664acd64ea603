from __future__ import annotations

import re
from typing import Dict

TYPO_MAP: Dict[str, str] = {
    "trak": "track",
    "oder": "order",
    "shiping": "shipping",
    "retun": "return",
    "pament": "payment",
    "produc": "product",
    "producs": "products",
    "recieve": "receive",
    "recieved": "received",
}

_TYPO_PATTERNS = [
    (re.compile(rf"\b{re.escape(typo)}\b", re.IGNORECASE), correct)
    for typo, correct in TYPO_MAP.items()
]


def normalize_typo(message: str) -> str:
    """Lowercase the message and fix common misspellings on whole words only."""
    normalized = (message or "").lower()
    for pattern, correct in _TYPO_PATTERNS:
        normalized = pattern.sub(correct, normalized)
    return normalized
