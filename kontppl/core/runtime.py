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

"""The effect protocol: handlers, the handler stack, and the trampoline.

Programs are written in continuation-passing style. A program is a callable
`program(store, k, address, *args)` whose only effects are

  | Effect                                      | Resumes with          |
  | ------------------------------------------- | --------------------- |
  | `rt.sample(store, k, address, dist, params)` | `k(store, value)`     |
  | `rt.factor(store, k, address, log_weight)`   | `k(store)`            |
  | `rt.exit(store, value)`                      | (handler decides)     |

Effects never call into the handler directly. They return a `Bounce`, a
deferred invocation which the trampoline (`trampoline`) evaluates. This
keeps the Python stack bounded by the program code between two effects, and
it lets a handler switch to a different execution simply by returning a
different stored continuation.

The `Runtime` keeps an explicit stack of handlers. Inference engines install
themselves on entry and restore the previous handler exactly once, on their
final exit.
"""

import math

from kontppl.core.datatypes import extend
from kontppl.core.exceptions import (
    FactorOutsideInferenceError,
    HandlerNestingError,
    InvalidScoreError,
)
from kontppl.core.random import PRNG
from kontppl.core.typing import (
    Address,
    Any,
    Callable,
    Continuation,
    FactorContinuation,
    List,
    Optional,
    Program,
    Sequence,
    Store,
    Value,
)

#####
# Trampoline
#####


class Bounce:
    """A suspended call `fn(*args)`, evaluated by `trampoline`."""

    __slots__ = ("fn", "args")

    def __init__(self, fn: Callable, *args):
        self.fn = fn
        self.args = args

    def __call__(self):
        return self.fn(*self.args)

    def __repr__(self):
        return f"Bounce({getattr(self.fn, '__qualname__', self.fn)})"


def resume(fn: Callable, *args) -> Bounce:
    return Bounce(fn, *args)


def trampoline(v: Any) -> Any:
    while isinstance(v, Bounce):
        v = v.fn(*v.args)
    return v


def cps_for_each(
    fn: Callable,
    next_k: Callable[[], Any],
    xs: Sequence,
    i: int = 0,
):
    """Runs `fn(x, i, xs, k)` for each element, where `k()` moves on to the
    next one. Calls `next_k()` after the last element."""
    if i == len(xs):
        return Bounce(next_k)
    return fn(xs[i], i, xs, lambda: Bounce(cps_for_each, fn, next_k, xs, i + 1))


#####
# Handlers
#####


class Handler:
    """
    A handler interprets the effects of the programs run beneath it and
    must provide `sample`, `factor` and `exit`. Handlers may additionally
    provide `sample_with_factor`; the runtime decomposes it otherwise.
    """

    name = "Handler"

    def __init__(self, rt: "Runtime"):
        self.rt = rt

    def sample(self, store: Store, k: Continuation, address: Address, dist, params: tuple):
        return resume(k, store, dist.sample(self.rt.rng, *params))

    def factor(self, store: Store, k: FactorContinuation, address: Address, score: float):
        raise NotImplementedError

    def exit(self, store: Store, value: Value):
        raise NotImplementedError


class TopLevelHandler(Handler):
    """Sits at the bottom of every handler stack: samples are drawn directly
    and the value a program exits with is handed back to the trampoline."""

    name = "TopLevel"

    def factor(self, store, k, address, score):
        raise FactorOutsideInferenceError(address)

    def exit(self, store, value):
        return value


def _return(store: Store, value: Value) -> Value:
    return value


class Runtime:
    def __init__(self, rng: Optional[PRNG] = None, seed: int = 0):
        self.rng = PRNG(seed) if rng is None else rng
        self.handlers: List[Handler] = [TopLevelHandler(self)]

    @property
    def current(self) -> Handler:
        return self.handlers[-1]

    def install(self, handler: Handler):
        self.handlers.append(handler)

    def restore(self, handler: Handler):
        if len(self.handlers) == 1:
            raise HandlerNestingError(
                f"{handler.name}: cannot remove the top-level handler"
            )
        if self.current is not handler:
            raise HandlerNestingError(
                f"{handler.name}: attempted to restore while "
                f"{self.current.name} is the active handler"
            )
        self.handlers.pop()

    #####
    # Effects
    #####

    def sample(self, store: Store, k: Continuation, address: Address, dist, params=()):
        return Bounce(self.current.sample, store, k, address, dist, tuple(params))

    def factor(self, store: Store, k: FactorContinuation, address: Address, score):
        score = check_score(self.current.name, "factor score", score, address=address)
        return Bounce(self.current.factor, store, k, address, score)

    def exit(self, store: Store, value: Value = None):
        return Bounce(self.current.exit, store, value)

    def sample_with_factor(
        self,
        store: Store,
        k: Continuation,
        address: Address,
        dist,
        params,
        score_fn: Program,
    ):
        """Samples a value, then factors by `score_fn(store, k, address, value)`."""
        handler = self.current
        if hasattr(handler, "sample_with_factor"):
            return Bounce(
                handler.sample_with_factor, store, k, address, dist, tuple(params), score_fn
            )

        def _sample_k(s, v):
            def _score_k(s, sc):
                return self.factor(s, lambda s: k(s, v), extend(address, "swf2"), sc)

            return score_fn(s, _score_k, extend(address, "swf1"), v)

        return self.sample(store, _sample_k, address, dist, params)

    #####
    # Entry points
    #####

    def run(self, program: Program, *args, store: Optional[Store] = None, address: Address = ()):
        """Runs `program` under the currently installed handler."""
        store = {} if store is None else store
        return trampoline(program(store, self.exit, address, *args))

    def infer(
        self,
        algorithm,
        program: Program,
        *args,
        store: Optional[Store] = None,
        address: Address = (),
    ):
        """Runs `algorithm` on `program` and returns the resulting marginal."""
        store = {} if store is None else store
        return trampoline(algorithm.start(self, store, _return, address, program, *args))


def check_score(algorithm: str, quantity: str, score, **context) -> float:
    """Coerces a log score to `float`, rejecting NaN."""
    score = float(score)
    if math.isnan(score):
        raise InvalidScoreError(algorithm, quantity, **context)
    return score
