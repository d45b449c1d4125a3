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

import jax
import jax.scipy.stats as stats

from kontppl.distributions.distribution import Distribution


class _Bernoulli(Distribution):
    def sample(self, rng, p=0.5):
        return bool(jax.random.bernoulli(rng.split(), p))

    def logpdf(self, v, p=0.5):
        if v not in (True, False):
            return float("-inf")
        return float(stats.bernoulli.logpmf(int(v), p))


Bernoulli = _Bernoulli()
bernoulli = Bernoulli
flip = Bernoulli

__all__ = ["Bernoulli", "bernoulli", "flip"]
