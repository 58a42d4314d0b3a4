"""
License Key Codec - Generation and format validation of human-typed keys.

Keys look like ``XXXX-XXXX-XXXX`` over a 32 character alphabet that leaves
out I, O, 0 and 1. Uniqueness is enforced at issuance, not here.
"""

import re
import secrets

LICENSE_KEY_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SEGMENT_COUNT = 3
SEGMENT_LENGTH = 4

_SEGMENT = f"[{LICENSE_KEY_CHARSET}]{{{SEGMENT_LENGTH}}}"
LICENSE_KEY_PATTERN = re.compile("-".join([_SEGMENT] * SEGMENT_COUNT))


def generate_license_key() -> str:
    """Generate a random license key from a CSPRNG."""
    # 256 is a multiple of 32, so byte % 32 is unbiased
    data = secrets.token_bytes(SEGMENT_COUNT * SEGMENT_LENGTH)
    chars = [LICENSE_KEY_CHARSET[b % len(LICENSE_KEY_CHARSET)] for b in data]
    segments = [
        "".join(chars[i : i + SEGMENT_LENGTH]) for i in range(0, len(chars), SEGMENT_LENGTH)
    ]
    return "-".join(segments)


def is_valid_license_key(value: str) -> bool:
    """Exact, case-sensitive format check. No trimming."""
    return LICENSE_KEY_PATTERN.fullmatch(value) is not None
