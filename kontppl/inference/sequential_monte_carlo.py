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

"""Particle filter with lightweight MH rejuvenation.

Sequential importance resampling which treats `factor` calls as
synchronization points, like `ParticleFilter`. After each resampling step
every particle is rejuvenated by a few iterations of lightweight MH over its
own trace, which counteracts the loss of diversity resampling causes.

With `num_particles == 1` this amounts to MH with an (expensive) annealed
initialization; with `rejuv_steps == 0` it is a plain particle filter.
"""

from dataclasses import dataclass

from kontppl.core.datatypes import Particle, TraceEntry, clone_store
from kontppl.core.exceptions import HandlerNestingError
from kontppl.core.runtime import Runtime, check_score, cps_for_each, resume
from kontppl.core.typing import NEG_INF, Address, Callable, Optional, typecheck
from kontppl.distributions.marginal import Histogram
from kontppl.inference.metropolis_hastings import TraceMH
from kontppl.inference.particle_filter import ParticleFilterBase

#####
# Lightweight MH on a particle
#####


class RejuvenationKernel(TraceMH):
    """
    Runs lightweight MH on the trace of one particle, then hands the
    resulting particle to `back_to_pf(particle, num_accepted, num_iterations)`.

    Proposals only touch choices from `particle.restricted_regen_from` on.
    When `limit_address` is given, re-execution stops at the factor with that
    address (where the particle is suspended) and the continuation captured
    there replaces the particle's own; a proposal that completes the program
    without reaching it is rejected. If `hist` is given, the value of every
    iteration is added to it.
    """

    name = "MHRejuvenation"

    def __init__(
        self,
        rt: Runtime,
        back_to_pf: Callable,
        particle: Particle,
        limit_address: Optional[Address],
        num_iterations: int,
        hist: Optional[Histogram] = None,
    ):
        super().__init__(rt, num_iterations)
        self.back_to_pf = back_to_pf
        self.particle = particle
        self.limit_address = limit_address
        self.hist = hist
        self.prefix_length = particle.restricted_regen_from
        self.value = particle.value
        self.store = particle.store
        self.continuation = particle.continuation
        self._limit_k = None
        self._reached_limit = False

        # Move the filter out of the way and install this as current handler.
        rt.install(self)

    def run(self):
        # If restricted, from the first choice after the last factor.
        self.trace = self.particle.trace.slice(self.prefix_length)
        self.old_trace = None
        self.curr_score = self.particle.score
        self.old_score = NEG_INF
        self.fwd_lp = 0.0
        self.bwd_lp = 0.0
        if self.iterations == 0 or self.curr_score == NEG_INF or len(self.trace) == 0:
            if self.hist is not None:
                # Stands in for every iteration it would have run.
                self.hist.add(self.particle.value, max(self.iterations, 1))
            self.rt.restore(self)
            return resume(self.back_to_pf, self.particle, 0, 0)
        return self._propose(self.value)

    def _propose(self, val):
        self._reached_limit = False
        self._limit_k = None
        return super()._propose(val)

    def factor(self, store, k, address, score):
        self.curr_score += score
        if address == self.limit_address:
            # The farthest point this particle has reached.
            self._reached_limit = True
            self._limit_k = k
            return resume(self.exit, store, None)
        if self.curr_score == NEG_INF:
            return resume(self.exit, store, None)
        return resume(k, store)

    def exit(self, store, val):
        if self.limit_address is not None and not self._reached_limit:
            self.curr_score = NEG_INF
        val, accepted = self._decide(val)
        if accepted:
            self.store = store
            if self.limit_address is not None:
                self.continuation = self._limit_k
        return self._complete(val, accepted)

    def _record(self, val):
        self.value = val
        if self.hist is not None:
            self.hist.add(val)

    def _finish(self):
        original = self.particle
        particle = Particle(
            continuation=self.continuation,
            store=clone_store(self.store),
            weight=original.weight,
            score=self.curr_score,
            # Splice the rejuvenated suffix back onto the untouched prefix.
            trace=original.trace.truncate(self.prefix_length).concat(self.trace),
            restricted_regen_from=original.restricted_regen_from,
            completed=original.completed,
            value=self.value,
            address=original.address,
        )
        self.rt.restore(self)
        return resume(self.back_to_pf, particle, self.num_accepted, self.total_iterations)


#####
# Particle filter with rejuvenation
#####


class ParticleFilterRejuvEngine(ParticleFilterBase):
    name = "ParticleFilterRejuv"

    def __init__(
        self,
        rt,
        store,
        k,
        address,
        program,
        args,
        num_particles: int,
        rejuv_steps: int,
        restrict: bool,
        hist_all_iterations: bool,
        strict: bool,
    ):
        self.rejuv_steps = rejuv_steps
        self.restrict = restrict
        self.hist_all_iterations = hist_all_iterations
        super().__init__(rt, store, k, address, program, args, num_particles, strict)

    def sample(self, store, k, address, dist, params):
        p = self.active
        val = dist.sample(self.rt.rng, *params)
        choice_score = check_score(self.name, "choice score", dist.logpdf(val, *params), address=address)
        p.trace.append(
            TraceEntry(clone_store(store), k, address, dist, params, p.score, choice_score, val, False)
        )
        p.score += choice_score
        return resume(k, store, val)

    def _weigh(self, particle, score):
        particle.weight += score
        particle.score += score

    def factor(self, store, k, address, score):
        return super().factor(clone_store(store), k, address, score)

    def _check_active(self, particle_index: int):
        # A rejuvenation kernel must never escape the filter that launched it.
        if self.rt.current is not self:
            raise HandlerNestingError(
                f"{self.name}: rejuvenation of particle {particle_index} at factor "
                f"{self.factor_index} launched while {self.rt.current.name} is active"
            )

    def _after_resample(self):
        def _rejuvenate(particle, i, particles, next_k):
            if particle.completed:
                return next_k()
            self._check_active(i)

            def _back(p, num_accepted, num_iterations):
                if self.restrict:
                    p.restricted_regen_from = len(p.trace)
                particles[i] = p
                return next_k()

            return RejuvenationKernel(
                self.rt, _back, particle, particle.address, self.rejuv_steps
            ).run()

        return cps_for_each(_rejuvenate, self._continue, self.particles)

    def _finish(self):
        # Final rejuvenation, over whole traces.
        hist = Histogram() if self.hist_all_iterations else None
        counts = {"accepted": 0, "iterations": 0}

        def _rejuvenate(particle, i, particles, next_k):
            self._check_active(i)
            particle.restricted_regen_from = 0

            def _back(p, num_accepted, num_iterations):
                counts["accepted"] += num_accepted
                counts["iterations"] += num_iterations
                particles[i] = p
                return next_k()

            return RejuvenationKernel(
                self.rt, _back, particle, None, self.rejuv_steps, hist
            ).run()

        def _done():
            final_hist = hist
            if final_hist is None:
                final_hist = Histogram()
                for p in self.particles:
                    final_hist.add(p.value)
            acceptance_ratio = None
            if counts["iterations"] > 0:
                acceptance_ratio = counts["accepted"] / counts["iterations"]
            return self._return(self._marginal(final_hist, acceptance_ratio=acceptance_ratio))

        return cps_for_each(_rejuvenate, _done, self.particles)


@typecheck
@dataclass(frozen=True)
class ParticleFilterRejuv:
    """Particle filter with `rejuv_steps` MH iterations per particle after
    every resampling step, and a final rejuvenation pass at exit.

    * `restrict`: rejuvenate only the choices made since the previous factor.
    * `hist_all_iterations`: build the marginal from every iteration of the
      final rejuvenation pass rather than from final particle values only.
    * `strict`: raise `ResamplingError` instead of warning when every
      particle has weight -inf at a barrier.
    """

    num_particles: int
    rejuv_steps: int
    restrict: bool = False
    hist_all_iterations: bool = True
    strict: bool = False

    def __post_init__(self):
        if self.num_particles < 1:
            raise ValueError(
                f"ParticleFilterRejuv: num_particles must be positive, got {self.num_particles}"
            )
        if self.rejuv_steps < 0:
            raise ValueError(
                f"ParticleFilterRejuv: rejuv_steps must be non-negative, got {self.rejuv_steps}"
            )

    def make_handler(self, rt: Runtime, store, k, address, program, *args) -> ParticleFilterRejuvEngine:
        return ParticleFilterRejuvEngine(
            rt,
            store,
            k,
            address,
            program,
            args,
            self.num_particles,
            self.rejuv_steps,
            self.restrict,
            self.hist_all_iterations,
            self.strict,
        )

    def start(self, rt: Runtime, store, k, address, program, *args):
        return self.make_handler(rt, store, k, address, program, *args).run()
