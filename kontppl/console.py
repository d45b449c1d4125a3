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

from dataclasses import dataclass

import jax
import rich
import rich.pretty
import rich.traceback as traceback
from rich.console import Console

#####
# Pretty printing
#####


@dataclass
class KontConsole:
    rich_console: Console

    def print(self, obj):
        self.rich_console.print(
            obj,
            soft_wrap=True,
            overflow="ellipsis",
        )

    def render(self, obj) -> str:
        console = Console(soft_wrap=True)
        with console.capture() as capture:
            console.print(
                obj,
                soft_wrap=True,
                overflow="ellipsis",
            )
        return capture.get()

    def inspect(self, obj, **kwargs):
        rich.inspect(obj, console=self.rich_console, **kwargs)


def console(**kwargs) -> KontConsole:
    return KontConsole(Console(soft_wrap=True, **kwargs))


def pretty(
    overflow="ellipsis",
    show_locals=False,
    max_frames=30,
    suppress=(jax,),
    **kwargs,
) -> KontConsole:
    """Installs rich pretty printing and tracebacks, and returns a console."""
    rich.pretty.install(overflow=overflow)
    traceback.install(
        show_locals=show_locals,
        max_frames=max_frames,
        suppress=list(suppress),
    )
    return console(**kwargs)


__all__ = ["KontConsole", "console", "pretty"]
