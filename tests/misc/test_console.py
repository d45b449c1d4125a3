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

import kontppl
from kontppl import Histogram, Marginal, Particle, Runtime, Trace, TraceEntry


class TestConsole:
    def test_console(self):
        c = kontppl.console()
        c.print(0)

    def test_marginal(self):
        hist = Histogram()
        hist.add(True, 3.0)
        hist.add(False)
        output = kontppl.console().render(Marginal(hist, normalization_constant=-0.5))
        assert "Marginal" in output
        assert "0.7500" in output
        assert "-0.5000" in output

    def test_marginal_without_normalization_constant(self):
        rt = Runtime(seed=0)

        def program(store, k, address):
            return rt.sample(store, k, address + ("x",), kontppl.flip, (0.5,))

        marginal = rt.infer(kontppl.MH(5), program)
        assert "Marginal" in kontppl.console().render(marginal)

    def test_trace(self):
        tr = Trace([TraceEntry({}, None, ("x", 0), kontppl.flip, (0.5,), 0.0, -0.6931, True)])
        output = kontppl.console().render(tr)
        assert "('x', 0)" in output
        assert "-0.6931" in output

    def test_particle_repr(self):
        p = Particle(continuation=None, store={})
        assert "Particle" in repr(p)
