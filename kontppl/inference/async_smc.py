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

"""Asynchronous anytime SMC (Paige, Wood, Doucet and Teh, 2014).

There is no barrier: particles are run one at a time from a bounded buffer.
At every `factor` a particle is compared with the running mean weight of
the particles which reached the same factor index before it, and is either
dropped or pushed back into the buffer owing some number of children.
Running more particles later (`Marginal.resume`) refines the result
without discarding prior work.
"""

import math
from dataclasses import dataclass

from kontppl.core.datatypes import Particle, clone_store
from kontppl.core.runtime import Handler, Runtime, _return, resume, trampoline
from kontppl.core.typing import (
    NEG_INF,
    Address,
    Continuation,
    Dict,
    List,
    Optional,
    Program,
    Store,
    Tuple,
    typecheck,
)
from kontppl.distributions.marginal import Histogram, Marginal
from kontppl.inference.resampling import log_mean_exp, logsumexp

NORMALIZATION_STRATEGIES = ("particle_weights", "running_mean")


@dataclass
class FactorStatistics:
    """Online statistics of the particles which reached one factor index."""

    arrivals: int
    wbar: float
    total_children: int


class AsyncSMCEngine(Handler):
    name = "AsyncSMC"

    def __init__(
        self,
        rt: Runtime,
        store: Store,
        k: Continuation,
        address: Address,
        program: Program,
        args: tuple,
        num_particles: int,
        buffer_size: int,
        normalization: str,
    ):
        super().__init__(rt)
        self.buffer_size = buffer_size
        self.num_particles = num_particles
        self.normalization = normalization
        self.statistics: Dict[int, FactorStatistics] = {}
        self.exited: List[Particle] = []
        self.num_launched = 0
        self.store = clone_store(store)

        def _entry(s):
            return program(s, rt.exit, address, *args)

        self._entry = _entry
        self.buffer: List[Particle] = [
            self._fresh_particle() for _ in range(buffer_size * 3 // 5)
        ]
        self.active: Optional[Particle] = None

        # Move the old handler out of the way and install this one.
        self.k = k
        self.caller_store = clone_store(store)
        rt.install(self)

    @property
    def num_exited(self) -> int:
        return len(self.exited)

    def _fresh_particle(self) -> Particle:
        self.num_launched += 1
        return Particle(continuation=self._entry, store=clone_store(self.store))

    def run(self):
        return self._control()

    def resume(self, num_particles: int, k: Continuation = _return):
        """Reinstalls this engine and runs until `num_particles` more
        particles have exited; the new marginal is passed to `k`."""
        if num_particles < 1:
            raise ValueError(f"{self.name}: num_particles must be positive, got {num_particles}")
        self.num_particles += num_particles
        self.k = k
        self.rt.install(self)
        return self._control()

    #####
    # Control
    #####

    def _control(self):
        # Uniform over the buffered particles, plus a fresh one while there is room.
        num_choices = len(self.buffer)
        if len(self.buffer) < self.buffer_size:
            num_choices += 1
        i = self.rt.rng.randint(num_choices)
        if i == len(self.buffer):
            p = self._fresh_particle()
        else:
            launch = self.buffer[i]
            if launch.num_children > 1:
                p = launch.copy(num_children=1)
                launch.num_children -= 1
            else:
                p = self.buffer.pop(i)
        self.active = p
        return resume(p.continuation, p.store)

    #####
    # Effects
    #####

    def factor(self, store, k, address, score):
        p = self.active
        p.weight += score
        p.continuation = k
        p.store = store
        p.address = address
        p.factor_index += 1

        stats = self.statistics.get(p.factor_index)
        if stats is None:
            # First arrival: the running mean starts at its weight.
            stats = FactorStatistics(arrivals=1, wbar=p.weight, total_children=0)
            self.statistics[p.factor_index] = stats
            if p.weight == NEG_INF:
                return self._control()
            stats.total_children = 1
            return self._reschedule(p, 1, p.weight)

        num_children, weight = self._num_children(stats, p)
        if num_children == 0:
            return self._control()
        return self._reschedule(p, num_children, weight)

    def _num_children(self, stats: FactorStatistics, p: Particle) -> Tuple[int, float]:
        """Updates `stats` with the arrival of `p`; returns the number of
        children `p` spawns and their weight."""
        prev = stats.arrivals
        multiplicity = p.multiplicity
        log_denom = math.log(prev + multiplicity)
        wbar = logsumexp(
            [
                math.log(prev) - log_denom + stats.wbar,
                math.log(multiplicity) - log_denom + p.weight,
            ]
        )
        stats.arrivals += 1
        stats.wbar = wbar
        if p.weight == NEG_INF:
            # Counted in the running mean, then dropped.
            return 0, NEG_INF

        log_ratio = p.weight - wbar
        if log_ratio < 0.0:
            if self.rt.rng.uniform() < math.exp(log_ratio):
                num_children, weight = 1, wbar
            else:
                num_children, weight = 0, NEG_INF
        else:
            ratio = math.exp(log_ratio)
            if stats.total_children <= min(self.buffer_size, prev):
                num_children = math.ceil(ratio)
            else:
                num_children = math.floor(ratio)
            weight = p.weight - math.log(num_children)
        stats.total_children += num_children
        return num_children, weight

    def _reschedule(self, p: Particle, num_children: int, weight: float):
        p.weight = weight
        if len(self.buffer) < self.buffer_size:
            p.num_children = num_children
            self.buffer.append(p)
            return self._control()
        # Buffer full: carry the children as multiplicity and keep going.
        p.multiplicity *= num_children
        p.num_children = 1
        return resume(p.continuation, p.store)

    def exit(self, store, value):
        p = self.active
        p.value = value
        p.store = store
        p.completed = True
        p.weight = math.log(p.multiplicity) + p.weight
        self.exited.append(p)
        if self.num_exited < self.num_particles:
            return self._control()
        return self._finish()

    #####
    # Exit
    #####

    def normalization_constant(self) -> float:
        if self.normalization == "running_mean":
            if not self.statistics:
                return 0.0
            return self.statistics[max(self.statistics)].wbar
        return log_mean_exp([p.weight for p in self.exited])

    def _finish(self):
        hist = Histogram()
        hist.add_weighted([p.value for p in self.exited], [p.weight for p in self.exited])
        dist = Marginal(
            hist,
            normalization_constant=self.normalization_constant(),
            num_particles=self.num_exited,
            resumer=lambda n: trampoline(self.resume(n)),
        )
        self.rt.restore(self)
        return resume(self.k, self.caller_store, dist)


@typecheck
@dataclass(frozen=True)
class AsyncSMC:
    """Asynchronous anytime SMC.

    Runs until `num_particles` particles have exited, keeping at most
    `buffer_size` particles pending. `normalization` selects how the log
    normalization constant is estimated: `"particle_weights"` averages the
    final particle weights, `"running_mean"` reports the running mean weight
    at the last factor index.
    """

    num_particles: int
    buffer_size: int
    normalization: str = "particle_weights"

    def __post_init__(self):
        if self.num_particles < 1:
            raise ValueError(f"AsyncSMC: num_particles must be positive, got {self.num_particles}")
        if self.buffer_size < 1:
            raise ValueError(f"AsyncSMC: buffer_size must be positive, got {self.buffer_size}")
        if self.normalization not in NORMALIZATION_STRATEGIES:
            raise ValueError(
                f"AsyncSMC: unknown normalization {self.normalization!r}, "
                f"expected one of {NORMALIZATION_STRATEGIES}"
            )

    def make_handler(self, rt: Runtime, store, k, address, program, *args) -> AsyncSMCEngine:
        return AsyncSMCEngine(
            rt,
            store,
            k,
            address,
            program,
            args,
            self.num_particles,
            self.buffer_size,
            self.normalization,
        )

    def start(self, rt: Runtime, store, k, address, program, *args):
        return self.make_handler(rt, store, k, address, program, *args).run()
