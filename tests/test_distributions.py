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

import jax.numpy as jnp
import numpy as np
import pytest

import kontppl
from kontppl import PRNG, Histogram, Marginal, NotResumableError, canonicalize, values_equal

NEG_INF = float("-inf")


class TestDistributions:
    rng = PRNG(314159)

    def test_flip(self):
        assert kontppl.flip.logpdf(True, 0.25) == pytest.approx(math.log(0.25))
        assert kontppl.flip.logpdf(False, 0.25) == pytest.approx(math.log(0.75))
        assert kontppl.flip.logpdf("heads", 0.25) == NEG_INF
        assert kontppl.bernoulli.sample(self.rng, 0.5) in (True, False)

    def test_categorical(self):
        assert kontppl.categorical.logpdf(1, [1.0, 3.0]) == pytest.approx(math.log(0.75))
        assert kontppl.categorical.logpdf(2, [1.0, 3.0]) == NEG_INF
        assert kontppl.categorical.sample(self.rng, [0.0, 1.0]) == 1

    def test_randint(self):
        assert kontppl.randint.logpdf(3, 4) == pytest.approx(-math.log(4))
        assert kontppl.randint.logpdf(4, 4) == NEG_INF
        assert 0 <= kontppl.randint.sample(self.rng, 4) < 4

    def test_continuous(self):
        assert kontppl.normal.logpdf(0.0, 0.0, 1.0) == pytest.approx(-0.5 * math.log(2 * math.pi), rel=1e-5)
        assert kontppl.uniform.logpdf(0.5, 0.0, 2.0) == pytest.approx(math.log(0.5), rel=1e-5)
        assert kontppl.uniform.logpdf(3.0, 0.0, 2.0) == NEG_INF
        assert 0.0 <= kontppl.uniform.sample(self.rng, 0.0, 2.0) <= 2.0

    def test_tuple_forms(self):
        assert kontppl.flip.score((0.25,), True) == kontppl.flip.logpdf(True, 0.25)
        assert kontppl.randint.draw(self.rng, (3,)) in (0, 1, 2)


class TestCanonicalize:
    def test_structural_keys(self):
        assert canonicalize([1, [2, 3]]) == (1, (2, 3))
        assert canonicalize({"a": [1]}) == canonicalize({"a": (1,)})
        assert canonicalize(np.array([[1, 2], [3, 4]])) == ((1, 2), (3, 4))
        assert canonicalize(jnp.array([1, 2])) == (1, 2)

    def test_values_equal(self):
        assert values_equal([1, 2], [1, 2])
        assert values_equal({"x": [True]}, {"x": [True]})
        assert not values_equal([1, 2], [2, 1])


class TestMarginal:
    def make(self):
        hist = Histogram()
        hist.add([1, 2])
        hist.add([1, 2])
        hist.add([3], 2.0)
        return Marginal(hist, normalization_constant=-1.0)

    def test_buckets(self):
        m = self.make()
        assert len(m) == 2
        assert m.prob([1, 2]) == pytest.approx(0.5)
        assert m.prob((1, 2)) == pytest.approx(0.5)
        assert m.prob([4]) == 0.0
        assert m.logpdf([4]) == NEG_INF
        assert m.score((), [3]) == pytest.approx(math.log(0.5))

    def test_sample(self):
        m = self.make()
        rng = PRNG(0)
        for _ in range(5):
            assert m.sample(rng) in m.support()

    def test_add_weighted(self):
        hist = Histogram()
        hist.add_weighted(["a", "b"], [math.log(1.0), math.log(3.0)])
        m = Marginal(hist)
        assert m.prob("b") == pytest.approx(0.75)

    def test_expectation(self):
        hist = Histogram()
        for v in [1, 2, 3]:
            hist.add(v)
        assert Marginal(hist).expectation() == pytest.approx(2.0)

    def test_empty(self):
        with pytest.raises(ValueError):
            Marginal(Histogram())

    def test_not_resumable(self):
        with pytest.raises(NotResumableError) as excinfo:
            self.make().resume(5)
        assert isinstance(excinfo.value, TypeError)
        assert "AsyncSMC" in str(excinfo.value)
