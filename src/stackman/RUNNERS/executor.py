# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Concurrent walk over a dependency graph, one thread per ready node.
"""
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import PartialFailureError
from .dependency_graph import DependencyGraph

logger = logging.getLogger(__name__)


@dataclass
class WalkResult:
    """
    Outcome of a graph walk. Every node ends up in exactly one of the three buckets.
    """
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, BaseException] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def first_error(self) -> Optional[BaseException]:
        return next(iter(self.failed.values()), None)

    def merge(self, other: "WalkResult") -> "WalkResult":
        """
        Combines two results over overlapping nodes. A node keeps its worst
        outcome: failed over skipped over completed.
        """
        failed = {**self.failed, **other.failed}
        skipped = [n for n in dict.fromkeys(self.skipped + other.skipped) if n not in failed]
        completed = [
            n for n in dict.fromkeys(self.completed + other.completed)
            if n not in failed and n not in skipped
        ]
        return WalkResult(completed=completed, failed=failed, skipped=skipped)

    def raise_for_failure(self) -> None:
        """
        Raises the first error if nothing completed, PartialFailureError if
        something did, and nothing if no node failed.
        """
        if not self.failed:
            return
        if not self.completed:
            raise self.first_error
        raise PartialFailureError(self.failed, self.skipped) from self.first_error


class OrderedExecutor:
    """
    Applies an action to every node of a graph, starting each node as soon
    as everything it waits for has completed.

    The coordinator loop runs in the calling thread and is the only code
    touching degree counters; workers just report back through a queue.
    """
    def __init__(self, graph: DependencyGraph, reverse: bool = False, fail_fast: bool = True):
        """
        :param graph: The graph to walk.
        :param reverse: Walk from dependents to dependencies (teardown).
        :param fail_fast: On the first failure stop launching any new node.
            Otherwise only the failed node's subtree is skipped.
        """
        self.graph = graph
        self.reverse = reverse
        self.fail_fast = fail_fast
        self.cancelled = threading.Event()

    def run(self, apply: Callable[[str], None], **kwargs) -> WalkResult:
        """
        Walks the graph and raises if any node failed.
        """
        result = self.walk(apply, **kwargs)
        result.raise_for_failure()
        return result

    def walk(
        self,
        apply: Callable[[str], None],
        blocked: Iterable[str] = (),
        on_skip: Optional[Callable[[str], None]] = None,
    ) -> WalkResult:
        """
        Walks the graph, joining every launched thread before returning.

        :param apply: Called once per node with its name; raising marks it failed.
        :param blocked: Nodes that must not run; they and their subtree are skipped.
        :param on_skip: Called with the name of every skipped node.
        :return: What completed, failed and was skipped.
        """
        result = WalkResult()
        n = len(self.graph)
        if n == 0:
            return result

        prerequisites, successors = self.graph.edges(self.reverse)
        remaining = [len(p) for p in prerequisites]
        poisoned = [False] * n
        for name in blocked:
            if name in self.graph:
                poisoned[self.graph.index(name)] = True

        completions: "queue.Queue" = queue.Queue()
        threads: List[threading.Thread] = []
        in_flight = 0

        def work(i: int):
            try:
                apply(self.graph.name(i))
            except Exception as e:
                completions.put((i, e))
            else:
                completions.put((i, None))

        def release(i: int, propagate: bool) -> List[int]:
            ready = []
            for j in successors[i]:
                if propagate:
                    poisoned[j] = True
                remaining[j] -= 1
                if remaining[j] == 0:
                    ready.append(j)
            return ready

        def schedule(ready: List[int]):
            nonlocal in_flight
            pending = list(ready)
            while pending:
                i = pending.pop(0)
                name = self.graph.name(i)
                if poisoned[i] or self.cancelled.is_set():
                    result.skipped.append(name)
                    logger.debug("Skipping %s due to earlier failure", name)
                    if on_skip:
                        on_skip(name)
                    pending.extend(release(i, propagate=True))
                    continue
                if n == 1:
                    # Nothing to overlap with.
                    work(i)
                else:
                    thread = threading.Thread(target=work, args=(i,), name=f"walk-{name}", daemon=True)
                    threads.append(thread)
                    thread.start()
                in_flight += 1

        schedule([i for i in range(n) if remaining[i] == 0])
        try:
            while in_flight:
                i, error = completions.get()
                in_flight -= 1
                name = self.graph.name(i)
                if error is None:
                    result.completed.append(name)
                    schedule(release(i, propagate=False))
                else:
                    logger.debug("%s failed: %s", name, error)
                    result.failed[name] = error
                    if self.fail_fast:
                        self.cancelled.set()
                    schedule(release(i, propagate=True))
        finally:
            for thread in threads:
                thread.join()
        return result


def run_concurrently(names: Iterable[str], apply: Callable[[str], None]) -> WalkResult:
    """
    Applies an action to independent items in parallel, letting every item
    run even if some fail.
    """
    executor = OrderedExecutor(DependencyGraph.from_nodes(names), fail_fast=False)
    return executor.walk(apply)
