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

"""Particle filtering: sequential importance resampling which treats
`factor` calls as synchronization points.

Particles are advanced round-robin, each until its next `factor` (or its
exit). When the last running particle reaches the barrier, the population
is resampled and the round starts again from the first running particle.
"""

import warnings
from dataclasses import dataclass

from kontppl.core.datatypes import Particle, clone_store
from kontppl.core.exceptions import DegenerateWeightsWarning, ResamplingError
from kontppl.core.runtime import Handler, Runtime, resume
from kontppl.core.typing import (
    NEG_INF,
    Address,
    Continuation,
    List,
    Program,
    Store,
    typecheck,
)
from kontppl.distributions.marginal import Histogram, Marginal
from kontppl.inference.resampling import log_mean_exp, residual_resample


class ParticleFilterBase(Handler):
    """Round-robin scheduling and barrier resampling over a fixed-size
    particle population."""

    name = "ParticleFilter"

    def __init__(
        self,
        rt: Runtime,
        store: Store,
        k: Continuation,
        address: Address,
        program: Program,
        args: tuple,
        num_particles: int,
        strict: bool,
    ):
        super().__init__(rt)
        self.strict = strict
        self.factor_index = 0

        def _entry(s):
            return program(s, rt.exit, address, *args)

        self.particles: List[Particle] = [
            Particle(continuation=_entry, store=clone_store(store))
            for _ in range(num_particles)
        ]
        self.particle_index = 0

        # Move the old handler out of the way and install this one.
        self.k = k
        self.caller_store = clone_store(store)
        rt.install(self)

    def run(self):
        return self._resume_active()

    #####
    # Scheduling
    #####

    @property
    def active(self) -> Particle:
        return self.particles[self.particle_index]

    def _resume_active(self):
        p = self.active
        return resume(p.continuation, p.store)

    def _first_running_index(self, start: int = 0) -> int:
        for i in range(start, len(self.particles)):
            if not self.particles[i].completed:
                return i
        return -1

    def _next_running_index(self) -> int:
        nxt = self._first_running_index(self.particle_index + 1)
        return nxt if nxt >= 0 else self._first_running_index()

    def _continue(self):
        # Resampling can kill every running particle (variable number of factors).
        first = self._first_running_index()
        if first < 0:
            return self._finish()
        self.particle_index = first
        return self._resume_active()

    #####
    # Effects
    #####

    def _weigh(self, particle: Particle, score: float):
        particle.weight += score

    def factor(self, store, k, address, score):
        p = self.active
        self._weigh(p, score)
        p.continuation = k
        p.store = store
        p.address = address
        if self._first_running_index(self.particle_index + 1) < 0:
            # Every running particle has reached this factor.
            return self._barrier()
        self.particle_index = self._next_running_index()
        return self._resume_active()

    def exit(self, store, value):
        p = self.active
        p.value = value
        p.completed = True
        p.store = store
        later = self._first_running_index(self.particle_index + 1)
        if later >= 0:
            self.particle_index = later
            return self._resume_active()
        if self._first_running_index() >= 0:
            # The remaining running particles are all waiting at a factor.
            return self._barrier()
        return self._finish()

    #####
    # Barrier
    #####

    def _barrier(self):
        self._resample()
        self.factor_index += 1
        return self._after_resample()

    def _after_resample(self):
        return self._continue()

    def _resample(self):
        particles, avg_w = residual_resample(self.rt.rng, self.particles)
        if avg_w == NEG_INF:
            if self.strict:
                raise ResamplingError(self.name, self.factor_index, len(self.particles))
            warnings.warn(
                f"{self.name}: all {len(self.particles)} particles have weight -inf "
                f"at factor {self.factor_index}, continuing without resampling",
                DegenerateWeightsWarning,
            )
            for p in self.particles:
                p.weight = avg_w
            return
        self.particles = particles

    #####
    # Exit
    #####

    def _marginal(self, hist: Histogram, **kwargs) -> Marginal:
        # Estimated normalization constant: average particle weight.
        return Marginal(
            hist,
            normalization_constant=log_mean_exp([p.weight for p in self.particles]),
            num_particles=len(self.particles),
            **kwargs,
        )

    def _return(self, dist: Marginal):
        self.rt.restore(self)
        return resume(self.k, self.caller_store, dist)

    def _finish(self):
        hist = Histogram()
        for p in self.particles:
            hist.add(p.value)
        return self._return(self._marginal(hist))


class ParticleFilterEngine(ParticleFilterBase):
    def sample(self, store, k, address, dist, params):
        return resume(k, store, dist.sample(self.rt.rng, *params))


@typecheck
@dataclass(frozen=True)
class ParticleFilter:
    """Synchronous particle filter with residual resampling at every factor.

    With `strict=True`, a barrier at which every particle has weight -inf
    raises `ResamplingError`; otherwise a `DegenerateWeightsWarning` is
    emitted and the particles continue unresampled.
    """

    num_particles: int
    strict: bool = True

    def __post_init__(self):
        if self.num_particles < 1:
            raise ValueError(
                f"ParticleFilter: num_particles must be positive, got {self.num_particles}"
            )

    def make_handler(self, rt: Runtime, store, k, address, program, *args) -> ParticleFilterEngine:
        return ParticleFilterEngine(
            rt, store, k, address, program, args, self.num_particles, self.strict
        )

    def start(self, rt: Runtime, store, k, address, program, *args):
        return self.make_handler(rt, store, k, address, program, *args).run()
