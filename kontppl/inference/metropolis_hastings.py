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

"""Lightweight (single-site, trace-based) Metropolis-Hastings.

Each iteration picks one random choice of the current trace uniformly,
rewinds execution to the point where it was made, forces a fresh draw for
it and re-runs the rest of the program from the stored continuation.
Choices downstream of the regeneration point reuse the values recorded
for their addresses in the previous trace, when there are any.
"""

import math
from dataclasses import dataclass

from kontppl.core.datatypes import Trace, TraceEntry, clone_store
from kontppl.core.exceptions import InvalidScoreError
from kontppl.core.runtime import Handler, Runtime, check_score, resume
from kontppl.core.typing import (
    NEG_INF,
    Address,
    Continuation,
    Optional,
    Program,
    Store,
    Value,
    typecheck,
)
from kontppl.distributions.marginal import Histogram, Marginal, values_equal


def accept_prob(
    curr_score: float,
    old_score: float,
    trace_length: int,
    old_trace_length: int,
    bwd_lp: float,
    fwd_lp: float,
) -> float:
    """MH acceptance probability of a single-site regeneration proposal.

    `fwd_lp` and `bwd_lp` are the log probabilities of the choices the
    proposal created and destroyed; the site itself is chosen uniformly
    from the old (forward) or new (backward) trace.
    """
    if old_score == NEG_INF or old_trace_length == 0:
        return 1.0
    if curr_score == NEG_INF:
        return 0.0
    fw = -math.log(old_trace_length) + fwd_lp
    bw = -math.log(trace_length) + bwd_lp
    log_p = curr_score - old_score + bw - fw
    if math.isnan(log_p):
        raise InvalidScoreError(
            "MH",
            "acceptance probability",
            curr_score=curr_score,
            old_score=old_score,
            bwd_lp=bwd_lp,
            fwd_lp=fwd_lp,
        )
    return 1.0 if log_p >= 0.0 else math.exp(log_p)


class TraceMH(Handler):
    """
    Sampling, proposal and accept/reject logic shared by trace-based MH
    handlers. Subclasses provide `factor`, `exit`, `_record` and `_finish`.

    Lengths used in the acceptance ratio are offset by `prefix_length`:
    choices before the offset belong to the trace but are never proposed to.
    """

    prefix_length = 0

    def __init__(self, rt: Runtime, num_iterations: int):
        super().__init__(rt)
        self.iterations = num_iterations
        self.total_iterations = num_iterations
        self.num_accepted = 0
        self.regen_from = 0
        self.trace = Trace()
        self.old_trace: Optional[Trace] = None
        self.curr_score = 0.0
        self.old_score = NEG_INF
        self.old_val: Value = None
        self.fwd_lp = 0.0
        self.bwd_lp = 0.0

    @property
    def score(self) -> float:
        return self.curr_score

    def _lookup(self, address: Address) -> Optional[TraceEntry]:
        prev = self.trace.lookup(address)
        if prev is None and self.old_trace is not None:
            prev = self.old_trace.lookup(address)
        return prev

    def sample(self, store, k, address, dist, params, force=False):
        prev = self._lookup(address)
        reuse = not (prev is None or force)
        val = prev.value if reuse else dist.sample(self.rt.rng, *params)
        if force and prev is not None and values_equal(prev.value, val):
            return self._noop_proposal()
        choice_score = check_score(self.name, "choice score", dist.logpdf(val, *params), address=address)
        entry = TraceEntry(
            clone_store(store),
            k,
            address,
            dist,
            params,
            self.curr_score,
            choice_score,
            val,
            reuse,
        )
        self.curr_score += choice_score
        self.trace.append(entry)
        if prev is None:
            self.fwd_lp += choice_score
        elif force:
            self.fwd_lp += choice_score
            self.bwd_lp += prev.choice_score
        if self.curr_score == NEG_INF:
            return resume(self.exit, store, None)
        return resume(k, store, val)

    def _propose(self, val: Value):
        if len(self.trace) == 0:
            # No random choices: every iteration keeps the only state there is.
            return resume(self._complete, val, True)
        self.regen_from = self.rt.rng.randint(len(self.trace))
        regen = self.trace[self.regen_from]
        self.old_trace = self.trace.copy()
        self.trace = self.old_trace.truncate(self.regen_from)
        self.fwd_lp = 0.0
        self.bwd_lp = 0.0
        self.old_score = self.curr_score
        self.curr_score = regen.score
        self.old_val = val
        return resume(
            self.sample,
            clone_store(regen.store),
            regen.k,
            regen.address,
            regen.dist,
            regen.params,
            True,
        )

    def _noop_proposal(self):
        # The forced draw reproduced the old value: the state is unchanged.
        self.trace = self.old_trace
        self.curr_score = self.old_score
        return resume(self._complete, self.old_val, True)

    def _reconcile(self):
        """Charges choices the proposal no longer reaches to `bwd_lp`."""
        if self.old_trace is None or self.curr_score == NEG_INF:
            return
        reached = set(self.trace.addresses()[self.regen_from :])
        for entry in self.old_trace.entries[self.regen_from :]:
            if entry.address not in reached:
                self.bwd_lp += entry.choice_score

    def _decide(self, val: Value):
        """Accepts or rolls back the pending proposal; returns the kept
        value and whether the proposal was accepted."""
        self._reconcile()
        old_length = 0 if self.old_trace is None else len(self.old_trace) + self.prefix_length
        acceptance = accept_prob(
            self.curr_score,
            self.old_score,
            len(self.trace) + self.prefix_length,
            old_length,
            self.bwd_lp,
            self.fwd_lp,
        )
        if self.rt.rng.uniform() >= acceptance:
            self.trace = self.old_trace
            self.curr_score = self.old_score
            return self.old_val, False
        return val, True

    def _complete(self, val: Value, accepted: bool):
        self.iterations -= 1
        if accepted:
            self.num_accepted += 1
        self._record(val)
        if self.iterations > 0:
            return self._propose(val)
        return self._finish()

    def _record(self, val: Value):
        raise NotImplementedError

    def _finish(self):
        raise NotImplementedError


class LightweightMH(TraceMH):
    name = "MH"

    def __init__(
        self,
        rt: Runtime,
        store: Store,
        k: Continuation,
        address: Address,
        program: Program,
        args: tuple,
        num_iterations: int,
    ):
        super().__init__(rt, num_iterations)
        self.caller_store = store
        self.k = k
        self.address = address
        self.program = program
        self.args = args
        self.hist = Histogram()

        # Install this as the current handler.
        rt.install(self)

    def run(self):
        self.trace = Trace()
        self.old_trace = None
        self.curr_score = 0.0
        self.old_score = NEG_INF
        self.fwd_lp = 0.0
        self.bwd_lp = 0.0
        store = clone_store(self.caller_store)
        return self.program(store, self.rt.exit, self.address, *self.args)

    def factor(self, store, k, address, score):
        self.curr_score += score
        if self.curr_score == NEG_INF:
            return resume(self.exit, store, None)
        return resume(k, store)

    def exit(self, store, val):
        if self.old_trace is None and self.curr_score == NEG_INF:
            # Not yet initialized: rejection sample an initial state.
            return resume(self.run)
        val, accepted = self._decide(val)
        return self._complete(val, accepted)

    def _record(self, val):
        self.hist.add(val)

    def _finish(self):
        dist = Marginal(
            self.hist,
            normalization_constant=None,
            acceptance_ratio=self.num_accepted / self.total_iterations,
            num_particles=self.total_iterations,
        )
        self.rt.restore(self)
        return resume(self.k, self.caller_store, dist)


@typecheck
@dataclass(frozen=True)
class MH:
    """Single-chain lightweight Metropolis-Hastings.

    Returns a marginal over the values of `num_iterations` MH states,
    annotated with the fraction of accepted proposals.
    """

    num_iterations: int

    def __post_init__(self):
        if self.num_iterations < 1:
            raise ValueError(f"MH: num_iterations must be positive, got {self.num_iterations}")

    def make_handler(self, rt: Runtime, store, k, address, program, *args) -> LightweightMH:
        return LightweightMH(rt, store, k, address, program, args, self.num_iterations)

    def start(self, rt: Runtime, store, k, address, program, *args):
        return self.make_handler(rt, store, k, address, program, *args).run()
