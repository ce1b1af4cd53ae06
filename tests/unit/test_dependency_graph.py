"""
Unit tests for the service dependency graph.
"""
import pytest

from stackman.errors import ConfigurationError, CyclicDependencyError
from stackman.MODELS.project import Project
from stackman.MODELS.service_definition import ServiceDefinition
from stackman.RUNNERS.dependency_graph import DependencyGraph


def make_project(deps):
    return Project(
        name="demo",
        services={
            name: ServiceDefinition(name=name, image="busybox", depends_on=list(d))
            for name, d in deps.items()
        },
    )


class TestFromProject:
    """Tests for building the graph of a project."""

    def test_levels_follow_dependencies(self):
        project = make_project({"web": ["db", "cache"], "db": [], "cache": [], "worker": ["db"]})
        graph = DependencyGraph.from_project(project)
        assert graph.levels() == [["cache", "db"], ["web", "worker"]]
        assert graph.levels(reverse=True) == [["web", "worker"], ["cache", "db"]]

    def test_every_service_appears_once(self):
        project = make_project({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]})
        order = DependencyGraph.from_project(project).order()
        assert sorted(order) == ["a", "b", "c", "d"]
        assert order.index("a") < order.index("b") < order.index("d")
        assert order.index("c") < order.index("d")

    def test_cycle_names_every_member(self):
        project = make_project({"a": ["c"], "b": ["a"], "c": ["b"]})
        with pytest.raises(CyclicDependencyError) as exc:
            DependencyGraph.from_project(project)
        assert set(exc.value.cycle) == {"a", "b", "c"}
        assert exc.value.cycle[0] == exc.value.cycle[-1]
        for name in ("a", "b", "c"):
            assert name in str(exc.value)

    def test_undefined_dependency(self):
        project = make_project({"web": ["db"]})
        with pytest.raises(ConfigurationError, match="undefined service db"):
            DependencyGraph.from_project(project)

    def test_implicit_dependencies(self):
        project = Project(
            name="demo",
            services={
                "app": ServiceDefinition(name="app", image="busybox"),
                "sidecar": ServiceDefinition(name="sidecar", image="busybox", network_mode="service:app"),
                "backup": ServiceDefinition(name="backup", image="busybox", volumes_from=["app:ro"]),
                "debug": ServiceDefinition(name="debug", image="busybox", ipc="service:app", links=["sidecar:sc"]),
            },
        )
        graph = DependencyGraph.from_project(project)
        assert graph.dependencies("sidecar") == {"app"}
        assert graph.dependencies("backup") == {"app"}
        assert graph.dependencies("debug") == {"app", "sidecar"}
        assert graph.dependents("app") == {"sidecar", "backup", "debug"}


def test_self_dependency_rejected():
    graph = DependencyGraph(["a"])
    with pytest.raises(ConfigurationError):
        graph.add_edge("a", "a")


def test_empty_graph():
    graph = DependencyGraph()
    assert len(graph) == 0
    assert graph.levels() == []
    assert graph.order(reverse=True) == []
