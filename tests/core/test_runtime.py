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
import sys

import pytest

import kontppl
from kontppl import (
    FactorOutsideInferenceError,
    Handler,
    HandlerNestingError,
    InvalidScoreError,
    ParticleFilter,
    Runtime,
    cps_for_each,
    trampoline,
)


def coin_chain(rt, n):
    def program(store, k, address):
        def loop(store, i, heads):
            if i == n:
                return k(store, heads)
            return rt.sample(
                store,
                lambda s, v: loop(s, i + 1, heads + int(v)),
                address + (i,),
                kontppl.flip,
                (0.5,),
            )

        return loop(store, 0, 0)

    return program


class TestTrampoline:
    def test_long_program_does_not_grow_the_stack(self):
        rt = Runtime(seed=1)
        n = 2 * sys.getrecursionlimit()
        heads = rt.run(coin_chain(rt, n))
        assert 0 < heads < n

    def test_cps_for_each_visits_in_order(self):
        seen = []

        def body(x, i, xs, k):
            seen.append((i, x))
            return k()

        result = trampoline(cps_for_each(body, lambda: "done", ["a", "b", "c"]))
        assert result == "done"
        assert seen == [(0, "a"), (1, "b"), (2, "c")]

    def test_cps_for_each_empty(self):
        assert trampoline(cps_for_each(None, lambda: 5, [])) == 5


class TestTopLevel:
    def test_exit_returns_value(self):
        rt = Runtime(seed=1)

        def program(store, k, address):
            return k(store, 42)

        assert rt.run(program) == 42

    def test_store_is_threaded(self):
        rt = Runtime(seed=1)

        def program(store, k, address):
            store["visited"] = True
            return k(store, store)

        assert rt.run(program, store={"x": 1}) == {"x": 1, "visited": True}

    def test_factor_outside_inference(self):
        rt = Runtime(seed=1)

        def program(store, k, address):
            return rt.factor(store, lambda s: k(s, None), address + ("f",), 0.0)

        with pytest.raises(FactorOutsideInferenceError):
            rt.run(program)

    def test_nan_factor_is_rejected(self):
        rt = Runtime(seed=1)

        def program(store, k, address):
            return rt.factor(store, lambda s: k(s, None), address + ("f",), math.nan)

        with pytest.raises(InvalidScoreError) as excinfo:
            rt.infer(ParticleFilter(5), program)
        assert excinfo.value.algorithm == "ParticleFilter"
        assert excinfo.value.context["address"] == ("f",)


class TestHandlerStack:
    def test_cannot_restore_top_level(self):
        rt = Runtime(seed=1)
        with pytest.raises(HandlerNestingError):
            rt.restore(rt.current)

    def test_restore_must_match_top(self):
        rt = Runtime(seed=1)
        outer, inner = Handler(rt), Handler(rt)
        rt.install(outer)
        rt.install(inner)
        with pytest.raises(HandlerNestingError):
            rt.restore(outer)
        rt.restore(inner)
        rt.restore(outer)
        assert len(rt.handlers) == 1

    def test_inference_restores_the_stack(self):
        rt = Runtime(seed=1)
        rt.infer(ParticleFilter(10), coin_chain(rt, 3))
        assert len(rt.handlers) == 1
        assert isinstance(rt.current, kontppl.TopLevelHandler)


class TestSampleWithFactor:
    def test_decomposes_into_sample_and_factor(self):
        rt = Runtime(seed=3)

        def only_heads(store, k, address, v):
            return k(store, 0.0 if v else float("-inf"))

        def program(store, k, address):
            return rt.sample_with_factor(
                store, k, address + ("x",), kontppl.flip, (0.5,), only_heads
            )

        marginal = rt.infer(ParticleFilter(50), program)
        assert marginal.prob(True) == 1.0
        assert marginal.normalization_constant == pytest.approx(math.log(0.5), abs=0.25)

    def test_handler_override_is_used(self):
        rt = Runtime(seed=3)
        calls = []

        class Recording(kontppl.TopLevelHandler):
            def sample_with_factor(self, store, k, address, dist, params, score_fn):
                calls.append(address)
                return kontppl.resume(k, store, True)

        handler = Recording(rt)
        rt.install(handler)

        def program(store, k, address):
            return rt.sample_with_factor(
                store, k, address + ("x",), kontppl.flip, (0.5,), None
            )

        assert rt.run(program) is True
        assert calls == [("x",)]
        rt.restore(handler)
