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


class _Normal(Distribution):
    def sample(self, rng, mu=0.0, sigma=1.0):
        return float(mu + sigma * jax.random.normal(rng.split()))

    def logpdf(self, v, mu=0.0, sigma=1.0):
        return float(stats.norm.logpdf(v, mu, sigma))


Normal = _Normal()
normal = Normal

__all__ = ["Normal", "normal"]
