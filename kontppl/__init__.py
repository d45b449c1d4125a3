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
`kontppl` is the inference core of a small probabilistic programming
language. Programs are written in continuation-passing style against three
effects, and inference algorithms are handlers which interpret them.

## High-level

- A program is a callable `program(store, k, address, *args)`. It makes random
  choices with `rt.sample`, weights its execution with `rt.factor`, and
  finishes by calling its continuation `k(store, value)`.
- Inference algorithms are configured with frozen dataclasses and run with
  `Runtime.infer`, which returns a `Marginal` over the program's values.

  | Algorithm             | Semantics (informal)                                           |
  | --------------------- | -------------------------------------------------------------- |
  | `MH`                  | Single-site lightweight Metropolis-Hastings with trace reuse  |
  | `ParticleFilter`      | Sequential importance resampling, synchronized at each factor |
  | `ParticleFilterRejuv` | Particle filter with MH rejuvenation after resampling          |
  | `AsyncSMC`            | Barrier-free anytime SMC, resumable with more particles        |

```python
import kontppl

def coin(store, k, address):
    def _observe(store, x):
        return rt.factor(store, lambda s: k(s, x), address + ("obs",), 0.0 if x else -1.0)
    return rt.sample(store, _observe, address + ("x",), kontppl.flip, (0.5,))

rt = kontppl.Runtime(seed=1)
marginal = rt.infer(kontppl.ParticleFilter(100), coin)
```
"""

__version__ = "0.1.0"

# Public exports.
from .console import *
from .core import *
from .distributions import *
from .inference import *
