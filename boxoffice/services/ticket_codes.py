"""Ticket code generation and QR payload handling.

The QR payload is the plain ticket code. The same string is what door
scanners send back for lookup, so no JSON wrapping is involved anywhere.
"""

import re
import secrets
import string
import time
from typing import Optional

CODE_PREFIX = "TIX"
RANDOM_SUFFIX_LENGTH = 9
_ALPHABET = string.ascii_uppercase + string.digits

# TIX-<epoch millis>-<random base36>
CODE_PATTERN = re.compile(r"^TIX-\d{10,}-[A-Z0-9]{6,}$")


def generate_ticket_code(now_ms: Optional[int] = None) -> str:
    """Return a new `TIX-<timestamp>-<random>` code."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
    return f"{CODE_PREFIX}-{now_ms}-{suffix}"


def qr_payload(code: str) -> str:
    """Payload to render as the ticket's QR code."""
    return code


def parse_scanned_code(payload: Optional[str]) -> Optional[str]:
    """Extract a ticket code from a scanned payload, or None if malformed."""
    if not payload:
        return None
    code = payload.strip()
    if not CODE_PATTERN.match(code):
        return None
    return code
