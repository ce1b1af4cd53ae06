"""
Dependency graph of services, used to order startup and shutdown.
"""
from typing import Dict, Iterable, List, Set, Tuple

from ..errors import ConfigurationError, CyclicDependencyError
from ..MODELS.project import Project

# DFS colours
_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


class DependencyGraph:
    """
    A DAG over service names.

    Nodes live in an arena and are addressed by index; an edge u -> v means
    u must be up before v. Top-level networks and volumes are not nodes:
    they are handled before (or after) the walk over services.
    """
    def __init__(self, names: Iterable[str] = ()):
        self._names: List[str] = []
        self._index: Dict[str, int] = {}
        # _dependencies[i]: nodes i waits for; _dependents[i]: nodes waiting for i
        self._dependencies: List[Set[int]] = []
        self._dependents: List[Set[int]] = []
        for name in names:
            self.add_node(name)

    @classmethod
    def from_nodes(cls, names: Iterable[str]) -> "DependencyGraph":
        """
        A graph without edges, for fanning out independent work.
        """
        return cls(names)

    @classmethod
    def from_project(cls, project: Project) -> "DependencyGraph":
        """
        Builds the service graph of a project.

        :param project: The project to analyse.
        :return: An acyclic graph.
        :raises ConfigurationError: If a service depends on an undeclared service.
        :raises CyclicDependencyError: If dependencies form a cycle.
        """
        graph = cls(project.service_names())
        for name in project.service_names():
            for dep in sorted(project.services[name].dependencies()):
                if dep not in project.services:
                    raise ConfigurationError(f"Service {name} depends on undefined service {dep}")
                graph.add_edge(dep, name)
        graph.check_acyclic()
        return graph

    def add_node(self, name: str) -> int:
        if name in self._index:
            return self._index[name]
        self._index[name] = len(self._names)
        self._names.append(name)
        self._dependencies.append(set())
        self._dependents.append(set())
        return self._index[name]

    def add_edge(self, before: str, after: str) -> None:
        """
        Records that `before` must be up before `after`.
        """
        if before == after:
            raise ConfigurationError(f"Service {before} cannot depend on itself")
        u, v = self.add_node(before), self.add_node(after)
        self._dependents[u].add(v)
        self._dependencies[v].add(u)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def name(self, index: int) -> str:
        return self._names[index]

    def index(self, name: str) -> int:
        return self._index[name]

    def dependencies(self, name: str) -> Set[str]:
        return {self._names[i] for i in self._dependencies[self._index[name]]}

    def dependents(self, name: str) -> Set[str]:
        return {self._names[i] for i in self._dependents[self._index[name]]}

    def edges(self, reverse: bool = False) -> Tuple[List[Set[int]], List[Set[int]]]:
        """
        Returns (prerequisites, successors) per node index for a walk direction.

        Walking forward a node waits for its dependencies; walking in reverse
        it waits for its dependents.
        """
        if reverse:
            return self._dependents, self._dependencies
        return self._dependencies, self._dependents

    def check_acyclic(self) -> None:
        """
        Three-colour depth first search.

        :raises CyclicDependencyError: Naming every service on the first cycle found.
        """
        color = [_UNVISITED] * len(self._names)
        path: List[int] = []

        def visit(i: int):
            color[i] = _IN_PROGRESS
            path.append(i)
            for j in sorted(self._dependents[i]):
                if color[j] == _IN_PROGRESS:
                    cycle = path[path.index(j):] + [j]
                    raise CyclicDependencyError([self._names[k] for k in cycle])
                if color[j] == _UNVISITED:
                    visit(j)
            path.pop()
            color[i] = _DONE

        for i in range(len(self._names)):
            if color[i] == _UNVISITED:
                visit(i)

    def levels(self, reverse: bool = False) -> List[List[str]]:
        """
        Groups nodes into waves: every node's prerequisites sit in earlier waves.

        :param reverse: Order for shutdown instead of startup.
        :return: Waves of names, each sorted alphabetically.
        """
        prerequisites, successors = self.edges(reverse)
        remaining = [len(p) for p in prerequisites]
        wave = [i for i, degree in enumerate(remaining) if degree == 0]
        result = []
        while wave:
            result.append(sorted(self._names[i] for i in wave))
            following = []
            for i in wave:
                for j in successors[i]:
                    remaining[j] -= 1
                    if remaining[j] == 0:
                        following.append(j)
            wave = following
        if sum(len(w) for w in result) != len(self._names):
            self.check_acyclic()
        return result

    def order(self, reverse: bool = False) -> List[str]:
        """
        Service names in the order they should be started (or stopped).
        """
        return [name for wave in self.levels(reverse) for name in wave]
