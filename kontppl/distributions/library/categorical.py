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

import jax.numpy as jnp

from kontppl.distributions.distribution import Distribution


class _Categorical(Distribution):
    """Distribution over indices `0..len(weights) - 1`, with probability
    proportional to the (unnormalized) `weights`."""

    def sample(self, rng, weights):
        return rng.categorical(weights)

    def logpdf(self, v, weights):
        if not isinstance(v, int) or isinstance(v, bool) or not 0 <= v < len(weights):
            return float("-inf")
        w = jnp.asarray(weights, dtype=jnp.float32)
        return float(jnp.log(w[v]) - jnp.log(jnp.sum(w)))


class _RandInt(Distribution):
    """Uniform over the integers `0..n - 1`."""

    def sample(self, rng, n):
        return rng.randint(n)

    def logpdf(self, v, n):
        if not isinstance(v, int) or isinstance(v, bool) or not 0 <= v < n:
            return float("-inf")
        return -float(jnp.log(n))


Categorical = _Categorical()
categorical = Categorical
RandInt = _RandInt()
randint = RandInt

__all__ = ["Categorical", "categorical", "RandInt", "randint"]
