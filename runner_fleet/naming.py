"""Name generation for runner groups and their derived resources."""

import hashlib
import random
import re
import time
from typing import Callable, Optional

# 40 random bits on top of the millisecond timestamp
SUFFIX_BITS = 40

_WORD_PATTERN = re.compile(r"[A-Za-z0-9]+")


def generate_unique_name(
    clock: Callable[[], float] = time.time,
    rng: Optional[random.Random] = None,
    prefix: str = "gitlab-runner",
) -> str:
    """Generate a collision-resistant runner group name.

    Args:
        clock: Time source returning seconds since the epoch
        rng: Random source; a system-backed generator is used when omitted
        prefix: Leading part of the generated name

    Returns:
        Name of the form ``<prefix>-<epoch millis><hex suffix>``
    """
    source = rng if rng is not None else random.SystemRandom()
    millis = int(clock() * 1000)
    suffix = source.getrandbits(SUFFIX_BITS)
    return f"{prefix}-{millis}{suffix:0{SUFFIX_BITS // 4}x}"


def pascal_case(value: str) -> str:
    """Convert ``gitlab-runner-123abc`` style names to ``GitlabRunner123abc``."""
    return "".join(word[:1].upper() + word[1:] for word in _WORD_PATTERN.findall(value))


def bounded_name(value: str, limit: int) -> str:
    """Fit a physical resource name into a platform length limit.

    Names that are too long keep their head and get a short digest of the
    full name appended, so distinct inputs stay distinct and the result is
    stable across runs.
    """
    if len(value) <= limit:
        return value
    digest = hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]
    return f"{value[: limit - len(digest) - 1]}-{digest}"
