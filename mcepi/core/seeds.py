"""
Random sources for MCEpi.

Every simulation draws from an explicit ``numpy.random.Generator``; the
global ``np.random`` state is never touched. A Monte Carlo run derives one
independent child stream per replicate index from a single base seed::

    SeedSequence(entropy=base_seed, spawn_key=(index,))

which is exactly the stream ``SeedSequence(base_seed).spawn(n)[index]``
would produce, but computed from the index alone. Replicate *i* therefore
does not depend on how many (or which) other replicates are run.
"""

from typing import Optional

import numpy as np

from ..errors import RandomSourceError
from ..utils.validators import _validate_seed


def check_seed(seed) -> Optional[int]:
    """Return *seed* unchanged or raise ``RandomSourceError`` if unusable."""
    error = _validate_seed(seed)
    if error:
        raise RandomSourceError(error)
    return None if seed is None else int(seed)


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create a generator seeded once from *seed* (OS entropy when ``None``)."""
    seed = check_seed(seed)
    return np.random.default_rng(seed)


def resolve_base_seed(seed: Optional[int] = None) -> int:
    """Return *seed*, or draw a fresh base seed from OS entropy.

    The drawn value is returned so that an unseeded run can be reported
    and replayed.
    """
    seed = check_seed(seed)
    if seed is not None:
        return seed
    return int(np.random.SeedSequence().generate_state(1, dtype=np.uint64)[0])


def replicate_seed_sequence(base_seed: int, index: int) -> np.random.SeedSequence:
    """Seed sequence for replicate *index* under *base_seed*."""
    base_seed = check_seed(base_seed)
    if base_seed is None:
        raise RandomSourceError("a base seed is required to derive replicate streams")
    if not isinstance(index, (int, np.integer)) or index < 0:
        raise RandomSourceError(f"replicate index must be a non-negative integer, got {index!r}")
    return np.random.SeedSequence(entropy=base_seed, spawn_key=(int(index),))


def replicate_rng(base_seed: int, index: int) -> np.random.Generator:
    """Independent, reproducible generator for replicate *index*."""
    return np.random.default_rng(replicate_seed_sequence(base_seed, index))
