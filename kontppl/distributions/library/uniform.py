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


class _Uniform(Distribution):
    def sample(self, rng, low=0.0, high=1.0):
        return float(jax.random.uniform(rng.split(), minval=low, maxval=high))

    def logpdf(self, v, low=0.0, high=1.0):
        return float(stats.uniform.logpdf(v, low, high - low))


Uniform = _Uniform()
uniform = Uniform

__all__ = ["Uniform", "uniform"]
