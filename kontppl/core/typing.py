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

"""Shared type aliases and the runtime type checker used across `kontppl`."""

from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from beartype import BeartypeConf, beartype
from jaxtyping import Array, ArrayLike, PRNGKeyArray

# Integers are accepted where floats are expected (PEP 484 numeric tower).
_conf = BeartypeConf(is_pep484_tower=True)
typecheck = beartype(conf=_conf)

PRNGKey = PRNGKeyArray

# A store is any container tree of program-visible state.
Store = Any

# Addresses are immutable tuples of address components.
AddressComponent = Union[str, int]
Address = Tuple[AddressComponent, ...]

# Log-space quantities are plain Python floats.
LogWeight = float
Score = float

Value = Any

# Continuations. `Continuation` resumes a program after a `sample` (store, value);
# `FactorContinuation` resumes after a `factor` (store).
Continuation = Callable[..., Any]
FactorContinuation = Callable[..., Any]

# A CPS program: `program(store, k, address, *args)`.
Program = Callable[..., Any]

NEG_INF = float("-inf")

__all__ = [
    "Address",
    "AddressComponent",
    "Any",
    "Array",
    "ArrayLike",
    "Callable",
    "Continuation",
    "Dict",
    "FactorContinuation",
    "Generic",
    "Hashable",
    "Iterable",
    "Iterator",
    "List",
    "LogWeight",
    "NEG_INF",
    "Optional",
    "PRNGKey",
    "Program",
    "Score",
    "Sequence",
    "Store",
    "Tuple",
    "TypeVar",
    "Union",
    "Value",
    "typecheck",
]
