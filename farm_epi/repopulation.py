"""Repopulation by proportional rescaling.

Movements are only simulated out of infected farms, and culled animals may
vanish, so a farm's compartments can drift away from its nominal herd size.
Rescaling brings S, I and R back up (or down) to the herd size while keeping
the within-farm proportions, i.e. the severity of the outbreak.

Each compartment is rounded to the nearest integer independently, so the
rescaled sum can differ from the herd size by rounding.
"""

from __future__ import annotations

import numpy as np


def rescale_to_herd_size(farms: np.ndarray) -> int:
    """Rescale every farm's (S, I, R) to its herd size (in place).

    Farms with no animals left are left untouched.

    Returns:
        Number of farms rescaled.
    """
    S = farms['susceptible'].astype(np.float64)
    I = farms['infected'].astype(np.float64)
    R = farms['recovered'].astype(np.float64)
    total = S + I + R
    mask = (total > 0) & (total != farms['herd_size'])
    if not np.any(mask):
        return 0

    scale = farms['herd_size'][mask] / total[mask]
    # Round half away from zero (all values are non-negative)
    farms['susceptible'][mask] = np.floor(S[mask] * scale + 0.5).astype(np.int64)
    farms['infected'][mask] = np.floor(I[mask] * scale + 0.5).astype(np.int64)
    farms['recovered'][mask] = np.floor(R[mask] * scale + 0.5).astype(np.int64)
    return int(np.count_nonzero(mask))
