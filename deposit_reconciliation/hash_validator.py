"""
Transaction Hash Validator

Syntactic checks for user-entered transaction hashes. No network access.

Accepted shapes (case-insensitive, surrounding whitespace ignored):
- 64 hexadecimal characters
- the same, prefixed with the 2-character marker '0x'
"""

import re
from dataclasses import dataclass

from .exceptions import InvalidIdentifier

HASH_LENGTH = 64
HASH_MARKER = '0x'

_HASH_PATTERN = re.compile(r'(?:0x)?[0-9a-f]{%d}' % HASH_LENGTH, re.IGNORECASE)


def validate(raw_input) -> bool:
    """
    Check whether input is a syntactically valid transaction hash

    Args:
        raw_input: Anything the user typed or pasted

    Returns:
        True if the trimmed input matches the canonical shape
    """
    if not isinstance(raw_input, str):
        return False

    # Trim before matching
    candidate = raw_input.strip()
    if not candidate:
        return False

    return _HASH_PATTERN.fullmatch(candidate) is not None


def normalize(raw_input) -> str:
    """
    Canonical form of a transaction hash: '0x' + 64 lowercase hex chars

    Raises:
        InvalidIdentifier: If input is not a valid hash
    """
    if not validate(raw_input):
        raise InvalidIdentifier(raw_input)

    digits = raw_input.strip().lower()
    if digits.startswith(HASH_MARKER):
        digits = digits[len(HASH_MARKER):]
    return HASH_MARKER + digits


@dataclass(frozen=True)
class TransactionIdentifier:
    """Validated, canonical transaction hash"""
    value: str

    @classmethod
    def parse(cls, raw_input) -> 'TransactionIdentifier':
        if isinstance(raw_input, TransactionIdentifier):
            return raw_input
        return cls(normalize(raw_input))

    @property
    def bare(self) -> str:
        """Hash without the marker"""
        return self.value[len(HASH_MARKER):]

    def __str__(self):
        return self.value

    def __repr__(self):
        return f"TransactionIdentifier({self.value[:10]}...{self.value[-6:]})"
