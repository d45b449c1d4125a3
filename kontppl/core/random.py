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

"""Injectable source of randomness.

Every random draw made by the runtime, the inference engines and the
distribution library goes through a `PRNG`. It owns a `jax.random` key which
is split on each use, so two runs seeded identically make identical draws.
"""

import jax
import jax.numpy as jnp

from kontppl.core.exceptions import InvalidScoreError
from kontppl.core.typing import Optional, PRNGKey, Sequence


class PRNG:
    def __init__(self, seed: int = 0, key: Optional[PRNGKey] = None):
        self.key = jax.random.PRNGKey(seed) if key is None else key

    def split(self) -> PRNGKey:
        self.key, sub_key = jax.random.split(self.key)
        return sub_key

    def fork(self) -> "PRNG":
        """Returns an independent generator, advancing this one."""
        return PRNG(key=self.split())

    def uniform(self) -> float:
        return float(jax.random.uniform(self.split()))

    def randint(self, n: int) -> int:
        """Uniform integer in `[0, n)`."""
        return int(jax.random.randint(self.split(), (), 0, n))

    def categorical(self, weights: Sequence[float]) -> int:
        """Index drawn with probability proportional to non-negative `weights`."""
        w = jnp.asarray(weights, dtype=jnp.float32)
        total = jnp.sum(w)
        if jnp.isnan(total):
            raise InvalidScoreError("PRNG", "categorical weight")
        if not total > 0.0:
            # Degenerate remainders: fall back to a uniform choice.
            return self.randint(len(weights))
        return int(jax.random.choice(self.split(), len(weights), p=w / total))

    def log_categorical(self, log_weights: Sequence[float]) -> int:
        """Index drawn with probability proportional to `exp(log_weights)`."""
        logits = jnp.asarray(log_weights, dtype=jnp.float32)
        return int(jax.random.categorical(self.split(), logits))
