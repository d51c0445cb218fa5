"""
Comparison of 64-bit perceptual image hashes.

Fingerprints are computed by the listing service and arrive as 16-character
hex strings; this module only parses and compares them.
"""

from typing import Optional

FINGERPRINT_BITS = 64
_MASK = (1 << FINGERPRINT_BITS) - 1


def parse_fingerprint(value: str) -> Optional[int]:
    """
    Parse a hex fingerprint.

    Returns:
        The unsigned 64-bit value, or None if the string is not valid hex
    """
    raw = (value or "").strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not raw or len(raw) > FINGERPRINT_BITS // 4:
        return None
    try:
        return int(raw, 16) & _MASK
    except ValueError:
        return None


def hamming_distance(a: int, b: int) -> int:
    return int((int(a) ^ int(b)).bit_count())
