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

"""Errors raised by the runtime and the inference engines.

A log score of negative infinity is *not* an error: engines treat it as
the signal to abandon the current execution. Everything here denotes a
defect which must not be allowed to propagate silently.
"""


class InferenceError(Exception):
    """Base class for all errors raised by `kontppl`."""


class InvalidScoreError(InferenceError, ValueError):
    """A weight, score or probability evaluated to NaN."""

    def __init__(self, algorithm: str, quantity: str, **context):
        self.algorithm = algorithm
        self.quantity = quantity
        self.context = context
        details = "".join(f", {k}={v!r}" for (k, v) in context.items())
        super().__init__(f"{algorithm}: {quantity} is NaN{details}")


class HandlerNestingError(InferenceError):
    """An inference handler was installed or removed out of order."""


class ResamplingError(InferenceError):
    """Every particle has weight -inf at a resampling barrier (strict mode)."""

    def __init__(self, algorithm: str, factor_index: int, num_particles: int):
        self.algorithm = algorithm
        self.factor_index = factor_index
        self.num_particles = num_particles
        super().__init__(
            f"{algorithm}: all {num_particles} particles have weight -inf "
            f"at factor {factor_index}"
        )


class FactorOutsideInferenceError(InferenceError):
    """`factor` was called without an inference handler installed."""

    def __init__(self, address):
        self.address = address
        super().__init__(f"factor at {address!r} is only allowed inside inference")


class NotResumableError(InferenceError, TypeError):
    """`resume` was called on a marginal from a non-anytime algorithm."""


class DegenerateWeightsWarning(RuntimeWarning):
    """Resampling was skipped because every particle has weight -inf."""
