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
Unit tests for the ordered concurrent executor.
"""
import random
import threading
import time

import pytest

from stackman.errors import PartialFailureError, RemoteCallError
from stackman.RUNNERS.dependency_graph import DependencyGraph
from stackman.RUNNERS.executor import OrderedExecutor, WalkResult, run_concurrently


def diamond() -> DependencyGraph:
    graph = DependencyGraph(["A", "B", "C", "D"])
    graph.add_edge("A", "B")
    graph.add_edge("A", "C")
    graph.add_edge("B", "D")
    graph.add_edge("C", "D")
    return graph


class Recorder:
    """Records start and end of every action, in order."""

    def __init__(self, delay=0.0, fail=()):
        self.lock = threading.Lock()
        self.log = []
        self.delay = delay
        self.fail = set(fail)

    def __call__(self, name):
        with self.lock:
            self.log.append(("start", name))
        if self.delay:
            time.sleep(random.uniform(0, self.delay))
        if name in self.fail:
            raise RemoteCallError(f"{name} failed")
        with self.lock:
            self.log.append(("end", name))

    def position(self, event, name):
        return self.log.index((event, name))

    def started(self):
        return {name for event, name in self.log if event == "start"}


class TestOrderedExecutor:
    """Tests for OrderedExecutor."""

    @pytest.mark.parametrize("run", range(20))
    def test_diamond_order_under_random_delays(self, run):
        recorder = Recorder(delay=0.005)
        result = OrderedExecutor(diamond()).walk(recorder)
        assert sorted(result.completed) == ["A", "B", "C", "D"]
        assert recorder.position("start", "B") > recorder.position("end", "A")
        assert recorder.position("start", "C") > recorder.position("end", "A")
        assert recorder.position("start", "D") > recorder.position("end", "B")
        assert recorder.position("start", "D") > recorder.position("end", "C")

    def test_siblings_run_concurrently(self):
        # B and C can only get past the barrier together.
        barrier = threading.Barrier(2, timeout=5)

        def apply(name):
            if name in ("B", "C"):
                barrier.wait()

        result = OrderedExecutor(diamond()).walk(apply)
        assert result.ok
        assert result.completed[-1] == "D"

    def test_reverse_walk(self):
        recorder = Recorder()
        OrderedExecutor(diamond(), reverse=True).walk(recorder)
        assert recorder.position("start", "A") > recorder.position("end", "B")
        assert recorder.position("start", "A") > recorder.position("end", "C")
        assert recorder.position("start", "B") > recorder.position("end", "D")

    def test_partial_failure_skips_dependents_only(self):
        recorder = Recorder(fail={"B"})
        skipped = []
        result = OrderedExecutor(diamond(), fail_fast=False).walk(recorder, on_skip=skipped.append)
        assert "D" not in recorder.started()
        assert sorted(result.completed) == ["A", "C"]
        assert list(result.failed) == ["B"]
        assert result.skipped == ["D"] == skipped
        with pytest.raises(PartialFailureError) as exc:
            result.raise_for_failure()
        assert isinstance(exc.value.first_error, RemoteCallError)

    def test_run_raises_partial_failure(self):
        with pytest.raises(PartialFailureError):
            OrderedExecutor(diamond()).run(Recorder(fail={"B"}))

    def test_fail_fast_stops_launching(self):
        graph = DependencyGraph(["a", "x", "y"])
        graph.add_edge("y", "x")
        executor = OrderedExecutor(graph, fail_fast=True)

        def apply(name):
            if name == "a":
                raise RemoteCallError("boom")
            if name == "y":
                assert executor.cancelled.wait(5)

        result = executor.walk(apply)
        assert list(result.failed) == ["a"]
        assert result.completed == ["y"]
        assert result.skipped == ["x"]

    def test_blocked_nodes_and_subtree_are_skipped(self):
        recorder = Recorder()
        skipped = []
        result = OrderedExecutor(diamond()).walk(recorder, blocked=["B"], on_skip=skipped.append)
        assert recorder.started() == {"A", "C"}
        assert sorted(result.skipped) == ["B", "D"]
        assert sorted(skipped) == ["B", "D"]
        assert result.ok

    def test_empty_graph(self):
        result = OrderedExecutor(DependencyGraph()).walk(Recorder())
        assert result == WalkResult()

    def test_single_node_runs_in_calling_thread(self):
        seen = []
        OrderedExecutor(DependencyGraph(["only"])).run(lambda name: seen.append(threading.current_thread()))
        assert seen == [threading.current_thread()]

    def test_total_failure_raises_original_error(self):
        def apply(name):
            raise RemoteCallError(f"{name} failed")

        with pytest.raises(RemoteCallError):
            OrderedExecutor(DependencyGraph(["a", "b"]), fail_fast=False).run(apply)


def test_run_concurrently_lets_every_item_run():
    recorder = Recorder(fail={"b"})
    result = run_concurrently(["a", "b", "c"], recorder)
    assert recorder.started() == {"a", "b", "c"}
    assert sorted(result.completed) == ["a", "c"]
    assert list(result.failed) == ["b"]


def test_merge_keeps_every_bucket():
    first = WalkResult(completed=["a"], failed={"b": RuntimeError("b")})
    second = WalkResult(completed=["c"], skipped=["d"])
    merged = first.merge(second)
    assert merged.completed == ["a", "c"]
    assert list(merged.failed) == ["b"]
    assert merged.skipped == ["d"]
    assert not merged.ok


def test_merge_puts_each_node_in_one_bucket():
    images = WalkResult(completed=["a", "c"], failed={"b": RuntimeError("pull failed")})
    services = WalkResult(completed=["a"], failed={"c": RuntimeError("create failed")}, skipped=["b", "d"])
    merged = images.merge(services)
    assert merged.completed == ["a"]
    assert list(merged.failed) == ["b", "c"]
    assert merged.skipped == ["d"]
