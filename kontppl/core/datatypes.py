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

"""Execution state carried across suspension points.

* A *store* is a tree of Python containers holding program-visible state.
  It is cloned whenever an execution forks, so that two live executions
  never share a mutable container.
* An *address* is a tuple identifying the occurrence of a random choice
  along one control-flow path.
* A `Trace` records the random choices of one execution, in order, with an
  index from address to the last entry recorded for it.
* A `Particle` is one weighted execution in a population algorithm.
"""

import dataclasses
from dataclasses import dataclass, field

import jax.tree_util as jtu
import rich.tree as rich_tree
from rich.markup import escape

from kontppl.core.typing import (
    Address,
    AddressComponent,
    Any,
    Continuation,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Score,
    Store,
    Value,
)

#####
# Stores and addresses
#####


def clone_store(store: Store) -> Store:
    """Structurally copies a store.

    Containers (dicts, lists, tuples, `None`) are rebuilt. Leaves are
    shared, so they must be treated as immutable by programs.
    """
    return jtu.tree_map(lambda v: v, store)


def extend(address: Address, *components: AddressComponent) -> Address:
    return address + components


#####
# Trace
#####


@dataclass(frozen=True)
class TraceEntry:
    store: Store
    k: Continuation
    address: Address
    dist: Any
    params: tuple
    score: Score
    choice_score: Score
    value: Value
    reused: bool = False


class Trace:
    """Ordered record of the random choices made by one execution.

    `index` always maps each address to the last entry recorded for it in
    *this* trace; prefixes built with `truncate` get their own index.
    """

    def __init__(self, entries: Optional[Iterable[TraceEntry]] = None):
        self.entries: List[TraceEntry] = []
        self.index: Dict[Address, TraceEntry] = {}
        for entry in entries or ():
            self.append(entry)

    def append(self, entry: TraceEntry):
        self.entries.append(entry)
        self.index[entry.address] = entry

    def lookup(self, address: Address) -> Optional[TraceEntry]:
        return self.index.get(address)

    def truncate(self, n: int) -> "Trace":
        return Trace(self.entries[:n])

    def slice(self, start: int) -> "Trace":
        return Trace(self.entries[start:])

    def concat(self, other: "Trace") -> "Trace":
        return Trace(self.entries + other.entries)

    def copy(self) -> "Trace":
        new = Trace()
        new.entries = list(self.entries)
        new.index = dict(self.index)
        return new

    def addresses(self) -> List[Address]:
        return [entry.address for entry in self.entries]

    def get_score(self) -> Score:
        return sum(entry.choice_score for entry in self.entries)

    def __contains__(self, address) -> bool:
        return address in self.index

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[TraceEntry]:
        return iter(self.entries)

    def __getitem__(self, idx) -> TraceEntry:
        return self.entries[idx]

    def __rich_tree__(self):
        tree = rich_tree.Tree(f"[bold](Trace, {len(self)} choices)")
        for entry in self.entries:
            sub = tree.add(f"[bold]{escape(str(entry.address))}")
            sub.add(f"value: {escape(repr(entry.value))}")
            sub.add(f"score: {entry.choice_score:.4f}")
        return tree

    def __rich__(self):
        return self.__rich_tree__()


#####
# Particle
#####


@dataclass
class Particle:
    continuation: Continuation
    store: Store
    weight: float = 0.0
    score: float = 0.0
    trace: Trace = field(default_factory=Trace)
    restricted_regen_from: int = 0
    completed: bool = False
    value: Value = None
    # Address of the factor this particle is suspended at.
    address: Optional[Address] = None
    # Asynchronous SMC bookkeeping.
    factor_index: int = -1
    num_children: int = 0
    multiplicity: int = 1

    def copy(self, **kwargs) -> "Particle":
        new = dataclasses.replace(
            self,
            store=clone_store(self.store),
            trace=self.trace.copy(),
        )
        for (k, v) in kwargs.items():
            setattr(new, k, v)
        return new
