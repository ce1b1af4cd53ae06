"""
Exception hierarchy shared by the graph walker, the reconcilers and the engine adapters.
"""
from typing import Dict, List, Optional


class StackmanError(Exception):
    """Base class for every error raised by stackman."""


class ConfigurationError(StackmanError):
    """
    The project description cannot be acted upon.
    Raised before any remote call is made.
    """


class CyclicDependencyError(ConfigurationError):
    """
    Services depend on each other in a loop.
    """
    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency between services: {' -> '.join(self.cycle)}")


class UnsupportedNetworkModeError(ConfigurationError):
    """A network mode that needs another container's namespace."""


class UnsupportedFormatError(ConfigurationError, ValueError):
    """Unknown output format requested from convert."""


class ExternalResourceMissingError(StackmanError):
    """
    A network or volume declared as external does not exist.
    """
    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} declared as external, but could not be found")


class RemoteCallError(StackmanError):
    """A call to the container engine failed."""


class ResourceNotFoundError(RemoteCallError):
    """The engine has no object with the requested id or name."""


class IncompatibleLabelsError(StackmanError):
    """
    Labels on a runtime object cannot be decoded, either because they were
    written by another schema version or because a required key is missing.
    """


class PartialFailureError(StackmanError):
    """
    Some units of work failed while others completed.
    Completed work is never rolled back.
    """
    def __init__(self, errors: Dict[str, BaseException], skipped: Optional[List[str]] = None):
        self.errors = dict(errors)
        self.skipped = list(skipped or [])
        first_name, first_error = next(iter(self.errors.items()))
        message = f"{first_name}: {first_error}"
        if len(self.errors) > 1:
            message += f" (and {len(self.errors) - 1} more failure(s))"
        if self.skipped:
            message += f"; skipped: {', '.join(self.skipped)}"
        super().__init__(message)

    @property
    def first_error(self) -> BaseException:
        return next(iter(self.errors.values()))
