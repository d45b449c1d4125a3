# Copyright 2022 MIT Probabilistic Computing Project
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

##############
# Resampling #
##############

import math

import numpy as np

from kontppl.core.datatypes import Particle
from kontppl.core.exceptions import InvalidScoreError
from kontppl.core.random import PRNG
from kontppl.core.typing import NEG_INF, Callable, List, Sequence, Tuple

# Weight bookkeeping is done in float64 with numpy: exact equalities
# (`-inf`, equal weights mapping to exactly one retained copy) matter here.
# `jax.scipy.special.logsumexp` is the usual helper for this, but it computes
# in float32 unless `jax_enable_x64` is set, and rounding there breaks both.


def logsumexp(log_weights: Sequence[float]) -> float:
    ws = np.asarray(log_weights, dtype=np.float64)
    if ws.size == 0:
        return NEG_INF
    top = np.max(ws)
    if np.isnan(top):
        raise InvalidScoreError("logsumexp", "log weight")
    if np.isinf(top):
        return float(top)
    return float(top + np.log(np.sum(np.exp(ws - top))))


def log_mean_exp(log_weights: Sequence[float]) -> float:
    """`log(mean(exp(log_weights)))`, exact when all weights are equal."""
    ws = np.asarray(log_weights, dtype=np.float64)
    if ws.size == 0:
        return NEG_INF
    top = np.max(ws)
    if np.isnan(top):
        raise InvalidScoreError("log_mean_exp", "log weight")
    if np.isinf(top):
        return float(top)
    return float(top + np.log(np.mean(np.exp(ws - top))))


def effective_sample_size(log_weights: Sequence[float]) -> float:
    """Compute the Effective Sample Size (ESS) of a set of log unnormalized weights."""
    ws = np.asarray(log_weights, dtype=np.float64)
    lse = logsumexp(ws)
    if lse == NEG_INF:
        return 0.0
    return math.exp(2 * lse - logsumexp(2 * ws))


def residual_resample_indices(
    rng: PRNG,
    log_weights: Sequence[float],
) -> Tuple[List[int], float]:
    """Residual resampling (Liu 2008, section 3.4.4).

    Returns the parent index of every slot of the new population, and the
    log-mean weight every resampled particle receives. Each parent `i` is
    retained `floor(exp(w_i - avg))` times; the remaining slots are filled by
    multinomial draws on the fractional remainders. If the mean weight is
    `-inf`, no indices are returned.
    """
    m = len(log_weights)
    avg_w = log_mean_exp(log_weights)
    if avg_w == NEG_INF:
        return [], avg_w
    retained = []
    remainders = []
    for (i, w) in enumerate(log_weights):
        expected = math.exp(w - avg_w)
        n_retained = math.floor(expected)
        remainders.append(expected - n_retained)
        retained.extend([i] * n_retained)
    retained = retained[:m]
    sampled = [rng.categorical(remainders) for _ in range(m - len(retained))]
    return sampled + retained, avg_w


def residual_resample(
    rng: PRNG,
    particles: List[Particle],
    copy: Callable[[Particle], Particle] = Particle.copy,
) -> Tuple[List[Particle], float]:
    """Resamples a population in proportion to weights.

    The population size is preserved and every particle of the result has
    weight equal to the log-mean weight of the input. When that mean is
    `-inf` the input population is returned untouched; callers decide
    whether that is an error.
    """
    parents, avg_w = residual_resample_indices(rng, [p.weight for p in particles])
    if avg_w == NEG_INF:
        return particles, avg_w
    resampled = [copy(particles[i]) for i in parents]
    for p in resampled:
        p.weight = avg_w
    return resampled, avg_w
