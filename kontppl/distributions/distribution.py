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

"""
This module contains the `Distribution` abstract base class.

Inference engines only rely on two capabilities of a distribution: drawing a
value given parameters, and scoring a value given parameters. The score is a
log probability (mass or density), equal to `-inf` outside the support and
never NaN.
"""

import abc

from kontppl.core.random import PRNG
from kontppl.core.typing import Any, Score, Value


class Distribution(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def sample(self, rng: PRNG, *params) -> Value:
        pass

    @abc.abstractmethod
    def logpdf(self, value: Value, *params) -> Score:
        pass

    # Tuple-of-parameters forms, matching the `sample` effect signature.
    def draw(self, rng: PRNG, params: tuple = ()) -> Value:
        return self.sample(rng, *params)

    def score(self, params: tuple, value: Value) -> Score:
        return self.logpdf(value, *params)

    def __repr__(self):
        return f"{type(self).__name__.lstrip('_')}()"

    def __eq__(self, other: Any):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))
