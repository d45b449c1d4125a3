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

import pytest

import kontppl
from kontppl import AsyncSMC, Particle, Runtime, trampoline
from kontppl.core.runtime import _return
from kontppl.inference.async_smc import FactorStatistics

NEG_INF = float("-inf")


def coin(rt):
    def program(store, k, address):
        return rt.sample(store, k, address + ("x",), kontppl.flip, (0.5,))

    return program


def weighted_coin(rt, scores):
    # Flips a coin, then factors by each of `scores` in turn.
    def program(store, k, address):
        def observe(store, x, t):
            if t == len(scores):
                return k(store, x)
            return rt.factor(
                store, lambda s: observe(s, x, t + 1), address + ("obs", t), scores[t]
            )

        return rt.sample(store, lambda s, x: observe(s, x, 0), address + ("x",), kontppl.flip, (0.5,))

    return program


def hard_constraint(rt):
    def program(store, k, address):
        def observe(store, x):
            return rt.factor(store, lambda s: k(s, x), address + ("obs",), 0.0 if x else NEG_INF)

        return rt.sample(store, observe, address + ("x",), kontppl.flip, (0.5,))

    return program


def repeated_constraint(rt, num_steps):
    # A fresh coin per step; only heads survive each observation.
    def program(store, k, address):
        def step(store, t):
            if t == num_steps:
                return k(store, t)

            def observe(store, x):
                return rt.factor(
                    store, lambda s: step(s, t + 1), address + ("obs", t), 0.0 if x else NEG_INF
                )

            return rt.sample(store, observe, address + ("x", t), kontppl.flip, (0.5,))

        return step(store, 0)

    return program


class TestAsyncSMC:
    def test_resume(self):
        rt = Runtime(seed=314159)
        marginal = rt.infer(AsyncSMC(10, 5), weighted_coin(rt, [math.log(0.5)]))
        assert marginal.num_particles == 10
        resumed = marginal.resume(5)
        assert resumed.num_particles == 15
        assert sum(p for (_, p) in resumed.items()) == pytest.approx(1.0)
        assert len(rt.handlers) == 1

    def test_engine_counters(self):
        rt = Runtime(seed=1)
        engine = AsyncSMC(8, 4).make_handler(rt, {}, _return, (), coin(rt))
        marginal = trampoline(engine.run())
        assert engine.num_exited == 8
        assert engine.num_launched >= 8
        assert len(engine.buffer) <= 4
        assert marginal.num_particles == 8

    def test_hard_constraint(self):
        rt = Runtime(seed=2)
        marginal = rt.infer(AsyncSMC(20, 10), hard_constraint(rt))
        assert marginal.prob(True) == 1.0

    def test_hard_constraint_evidence(self):
        rt = Runtime(seed=0)
        alg = AsyncSMC(200, 10, normalization="running_mean")
        engine = alg.make_handler(rt, {}, _return, (), hard_constraint(rt))
        marginal = trampoline(engine.run())
        assert marginal.prob(True) == 1.0
        assert marginal.normalization_constant == pytest.approx(math.log(0.5), abs=0.2)
        # Every particle which reached the factor counts, including dropped ones.
        not_started = sum(1 for p in engine.buffer if p.factor_index == -1)
        assert engine.statistics[0].arrivals == engine.num_launched - not_started

    def test_particle_weights_with_dropped_particles(self):
        rt = Runtime(seed=0)
        marginal = rt.infer(AsyncSMC(200, 10), hard_constraint(rt))
        assert NEG_INF < marginal.normalization_constant <= 0.0

    def test_first_arrival_dropped(self):
        rt = Runtime(seed=1)
        engine = AsyncSMC(5, 2).make_handler(rt, {}, _return, (), coin(rt))
        engine.active = Particle(continuation=None, store={})
        engine.factor({}, lambda s: None, ("obs",), NEG_INF)
        stats = engine.statistics[0]
        assert (stats.arrivals, stats.wbar, stats.total_children) == (1, NEG_INF, 0)
        # A later finite arrival is compared against the dropped one too.
        engine.active = Particle(continuation=None, store={})
        engine.factor({}, lambda s: None, ("obs",), 0.0)
        assert stats.arrivals == 2
        assert stats.wbar == pytest.approx(math.log(0.5))

    def test_full_buffer_multiplicity(self):
        rt = Runtime(seed=2)
        engine = AsyncSMC(5, 1).make_handler(rt, {}, _return, (), coin(rt))
        waiting = Particle(continuation=None, store={})
        engine.buffer.append(waiting)
        stats = FactorStatistics(arrivals=1000, wbar=math.log(0.25), total_children=2000)
        engine.statistics[0] = stats
        p = Particle(continuation=None, store={})
        engine.active = p
        result = trampoline(engine.factor({}, lambda s: "resumed", ("obs",), 0.0))
        # The particle carries its three children and keeps running.
        assert result == "resumed"
        assert len(engine.buffer) == 1 and engine.buffer[0] is waiting
        assert p.multiplicity == 3
        assert p.num_children == 1
        assert p.weight == pytest.approx(-math.log(3))
        assert stats.arrivals == 1001
        assert stats.total_children == 2003

    def test_single_slot_buffer(self):
        rt = Runtime(seed=3)
        engine = AsyncSMC(150, 1).make_handler(rt, {}, _return, (), repeated_constraint(rt, 3))
        marginal = trampoline(engine.run())
        assert marginal.prob(3) == 1.0
        assert any(p.multiplicity > 1 for p in engine.exited)

    def test_no_factors(self):
        for normalization in ["particle_weights", "running_mean"]:
            rt = Runtime(seed=3)
            marginal = rt.infer(AsyncSMC(30, 10, normalization=normalization), coin(rt))
            assert marginal.normalization_constant == 0.0
            assert set(marginal.support()) <= {True, False}

    def test_running_mean(self):
        rt = Runtime(seed=4)
        alg = AsyncSMC(20, 10, normalization="running_mean")
        engine = alg.make_handler(rt, {}, _return, (), weighted_coin(rt, [math.log(0.5), math.log(0.25)]))
        marginal = trampoline(engine.run())
        assert sorted(engine.statistics) == [0, 1]
        assert marginal.normalization_constant == engine.statistics[1].wbar
        assert engine.statistics[0].wbar == pytest.approx(math.log(0.5))

    def test_particle_weights(self):
        rt = Runtime(seed=5)
        marginal = rt.infer(AsyncSMC(20, 10), weighted_coin(rt, [math.log(0.5)]))
        assert NEG_INF < marginal.normalization_constant <= math.log(0.5) + 1e-9

    def test_validation(self):
        with pytest.raises(ValueError):
            AsyncSMC(0, 5)
        with pytest.raises(ValueError):
            AsyncSMC(10, 0)
        with pytest.raises(ValueError):
            AsyncSMC(10, 5, normalization="harmonic")

    def test_resume_validation(self):
        rt = Runtime(seed=6)
        marginal = rt.infer(AsyncSMC(4, 2), coin(rt))
        with pytest.raises(ValueError):
            marginal.resume(0)
