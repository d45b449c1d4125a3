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

from .async_smc import AsyncSMC, AsyncSMCEngine
from .metropolis_hastings import MH, LightweightMH, accept_prob
from .particle_filter import ParticleFilter, ParticleFilterEngine
from .resampling import (
    effective_sample_size,
    log_mean_exp,
    logsumexp,
    residual_resample,
    residual_resample_indices,
)
from .sequential_monte_carlo import (
    ParticleFilterRejuv,
    ParticleFilterRejuvEngine,
    RejuvenationKernel,
)
