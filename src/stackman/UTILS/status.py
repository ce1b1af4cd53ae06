"""
Utilities for summarising container states.
"""
from collections import Counter
from typing import Dict, Iterable, List, Tuple

from ..errors import IncompatibleLabelsError
from ..MODELS.runtime import ContainerSummary


def group_by_label(
    containers: Iterable[ContainerSummary], label: str
) -> Tuple[Dict[str, List[ContainerSummary]], List[str]]:
    """
    Groups containers by the value of a label.

    :return: The groups and their keys, sorted.
    :raises IncompatibleLabelsError: If a container lacks the label.
    """
    groups: Dict[str, List[ContainerSummary]] = {}
    for container in containers:
        if label not in container.labels:
            raise IncompatibleLabelsError(f"No label {label!r} set on container {container.id!r}")
        groups.setdefault(container.labels[label], []).append(container)
    return groups, sorted(groups)


def combined_status(states: Iterable[str]) -> str:
    """
    Summarises states as "state(count)" entries sorted by state,
    e.g. "exited(1), running(3)".
    """
    counts = Counter(states)
    return ", ".join(f"{state}({counts[state]})" for state in sorted(counts))
