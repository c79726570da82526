"""Per-run seed derivation.

A run's seed depends only on its batch seed and its ordinal, never on shared
RNG state, so results do not depend on execution order or worker count.
"""

import hashlib

_SEED_MASK = (1 << 63) - 1


def derive_run_seed(batch_seed: str, ordinal: int) -> int:
    """Stable 63-bit seed for run ``ordinal`` of a batch seeded ``batch_seed``."""
    material = f"{batch_seed.strip()}_{ordinal}".encode("utf-8")
    digest = hashlib.sha256(material).digest()
    return int.from_bytes(digest[:8], "big") & _SEED_MASK
