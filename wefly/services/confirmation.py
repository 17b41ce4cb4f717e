import re
import secrets
from datetime import date
from typing import Optional

# 32 symbols: digits 2-9 and A-Z without I and O
CODE_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
SUFFIX_LENGTH = 6
DEFAULT_PREFIX = "WEF"

_system_random = secrets.SystemRandom()


def generate_confirmation_code(day: date, rng=None, prefix: str = DEFAULT_PREFIX) -> str:
    """
    Build a customer-facing code like ``WEF-20250914-7KQ2MZ``.

    ``day`` is the flight date. ``rng`` needs a ``choice`` method and defaults
    to the OS entropy source. Uniqueness is enforced by the caller against the
    database.
    """
    rng = rng or _system_random
    suffix = "".join(rng.choice(CODE_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{day:%Y%m%d}-{suffix}"


def is_confirmation_code(value: str, prefix: Optional[str] = None) -> bool:
    prefix_pattern = re.escape(prefix) if prefix else "[A-Z0-9]+"
    pattern = rf"{prefix_pattern}-\d{{8}}-[{CODE_ALPHABET}]{{{SUFFIX_LENGTH}}}"
    return re.fullmatch(pattern, value) is not None
