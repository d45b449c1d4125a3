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

import math

import kontppl
from kontppl import MH, AsyncSMC, ParticleFilter, ParticleFilterRejuv, Runtime

# A two-state hidden Markov model, observed noisily at every step.
# Compares the posterior over the final state under each engine.

observations = [True, True, False, True, True, True, False, True]

rt = Runtime(seed=314159)


def hmm(store, k, address):
    def step(store, t, prev):
        if t == len(observations):
            return k(store, prev)

        def observe(store, state):
            score = math.log(0.8) if state == observations[t] else math.log(0.2)
            return rt.factor(
                store,
                lambda s: step(s, t + 1, state),
                address + ("obs", t),
                score,
            )

        p = 0.9 if prev else 0.1
        return rt.sample(store, observe, address + ("state", t), kontppl.flip, (p,))

    return step(store, 0, True)


console = kontppl.console()
for alg in [
    MH(500),
    ParticleFilter(200),
    ParticleFilterRejuv(100, 3, restrict=True),
    AsyncSMC(200, 20),
]:
    marginal = rt.infer(alg, hmm)
    console.print(alg)
    console.print(marginal)

# Anytime refinement: add particles to a finished run.
marginal = rt.infer(AsyncSMC(50, 20), hmm)
for _ in range(3):
    marginal = marginal.resume(50)
    console.print(f"{marginal.num_particles} particles: p(final state) = {marginal.prob(True):.3f}")
