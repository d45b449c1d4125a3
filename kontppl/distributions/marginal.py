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

"""Empirical distributions over program return values.

Every inference engine returns a `Marginal`: a normalized histogram over the
values its samples or particles exited with. Values are bucketed by a
canonical structural key, so `[1, 2]` and `[1, 2]` (distinct lists) fall into
the same bucket, as do equal arrays.
"""

import math

import jax
import numpy as np
from plum import dispatch
from rich.markup import escape
from rich.table import Table

from kontppl.core.exceptions import InvalidScoreError, NotResumableError
from kontppl.core.typing import Callable, Dict, Hashable, List, Optional, Tuple, Value
from kontppl.distributions.distribution import Distribution

#####
# Canonical keys
#####


@dispatch
def canonicalize(v: object):
    return v


@dispatch
def canonicalize(v: list):
    return tuple(canonicalize(x) for x in v)


@dispatch
def canonicalize(v: tuple):
    return tuple(canonicalize(x) for x in v)


@dispatch
def canonicalize(v: dict):
    return frozenset((k, canonicalize(x)) for (k, x) in v.items())


@dispatch
def canonicalize(v: np.ndarray):
    return canonicalize(v.tolist())


@dispatch
def canonicalize(v: jax.Array):
    return canonicalize(np.asarray(v).tolist())


def values_equal(v1: Value, v2: Value) -> bool:
    return canonicalize(v1) == canonicalize(v2)


#####
# Histogram
#####


class Histogram:
    """Accumulates (non-negative) mass per structurally distinct value."""

    def __init__(self):
        self.buckets: Dict[Hashable, List] = {}

    def add(self, value: Value, mass: float = 1.0):
        key = canonicalize(value)
        if key in self.buckets:
            self.buckets[key][1] += mass
        else:
            self.buckets[key] = [value, mass]

    def add_weighted(self, values: List[Value], log_weights: List[float]):
        """Adds each value with mass proportional to `exp(log_weight)`."""
        top = max(log_weights)
        if top == float("-inf"):
            for v in values:
                self.add(v)
            return
        for (v, lw) in zip(values, log_weights):
            self.add(v, math.exp(lw - top))

    def total(self) -> float:
        return sum(mass for (_, mass) in self.buckets.values())

    def items(self) -> List[Tuple[Value, float]]:
        return [(v, mass) for (v, mass) in self.buckets.values()]

    def __len__(self):
        return len(self.buckets)


#####
# Marginal
#####


class Marginal(Distribution):
    def __init__(
        self,
        hist: Histogram,
        normalization_constant: Optional[float] = 0.0,
        acceptance_ratio: Optional[float] = None,
        num_particles: Optional[int] = None,
        resumer: Optional[Callable[[int], "Marginal"]] = None,
    ):
        total = hist.total()
        if math.isnan(total):
            raise InvalidScoreError("Marginal", "histogram mass")
        if not total > 0.0:
            raise ValueError("cannot build a marginal from an empty histogram")
        self._values: Dict[Hashable, Value] = {}
        self._probs: Dict[Hashable, float] = {}
        for (key, (v, mass)) in hist.buckets.items():
            self._values[key] = v
            self._probs[key] = mass / total
        self.normalization_constant = normalization_constant
        self.acceptance_ratio = acceptance_ratio
        self.num_particles = num_particles
        self._resumer = resumer

    def support(self) -> List[Value]:
        return list(self._values.values())

    def prob(self, value: Value) -> float:
        return self._probs.get(canonicalize(value), 0.0)

    def items(self) -> List[Tuple[Value, float]]:
        return [(self._values[key], p) for (key, p) in self._probs.items()]

    def as_dict(self) -> Dict[Hashable, float]:
        return dict(self._probs)

    def expectation(self, f: Callable[[Value], float] = lambda v: v) -> float:
        return sum(p * f(v) for (v, p) in self.items())

    def sample(self, rng, *params) -> Value:
        keys = list(self._probs.keys())
        idx = rng.categorical([self._probs[key] for key in keys])
        return self._values[keys[idx]]

    def logpdf(self, value: Value, *params) -> float:
        p = self.prob(value)
        return math.log(p) if p > 0.0 else float("-inf")

    def resume(self, num_particles: int) -> "Marginal":
        """Continues the inference that produced this marginal with
        `num_particles` more particles (anytime algorithms only)."""
        if self._resumer is None:
            raise NotResumableError(
                "only marginals returned by AsyncSMC can be resumed; rerun the "
                "algorithm which produced this one with more particles or iterations"
            )
        return self._resumer(num_particles)

    def __len__(self):
        return len(self._probs)

    def __repr__(self):
        body = ", ".join(f"{v!r}: {p:.4f}" for (v, p) in self.items())
        return f"Marginal({{{body}}})"

    def __rich__(self):
        caption = None
        if self.normalization_constant is not None:
            caption = f"log Z ≈ {self.normalization_constant:.4f}"
        table = Table(title="Marginal", caption=caption)
        table.add_column("value")
        table.add_column("probability", justify="right")
        for (v, p) in sorted(self.items(), key=lambda item: -item[1]):
            table.add_row(escape(repr(v)), f"{p:.4f}")
        return table

    # Marginals compare by identity.
    __eq__ = object.__eq__
    __hash__ = object.__hash__
