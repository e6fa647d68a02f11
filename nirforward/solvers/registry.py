"""
Global registry for available solver backends.
"""

from nirforward.errors import UnknownSolver
from .base import FieldSolver, SolverKind


class SolverRegistry:
    """
    Global registry of solver backends, keyed by `SolverKind`.

    Backends are registered at import time by `register_all_solvers()`.
    Identifiers are resolved case-insensitively against the kind value and
    a table of aliases.
    """
    _solvers: dict[SolverKind, FieldSolver] = {}
    _aliases: dict[str, SolverKind] = {}

    @classmethod
    def register(cls, solver: FieldSolver, aliases: tuple[str, ...] = ()) -> None:
        """Register a backend and the names it answers to."""
        if solver.kind in cls._solvers:
            raise ValueError(f"Solver '{solver.kind.value}' is already registered")
        cls._solvers[solver.kind] = solver
        for name in (solver.kind.value, solver.kind.name, *aliases):
            cls._aliases[cls._normalize(name)] = solver.kind

    @classmethod
    def resolve(cls, identifier: "str | SolverKind") -> SolverKind:
        """Map an enum member, name or alias to a registered kind."""
        if isinstance(identifier, SolverKind):
            kind = identifier
        elif isinstance(identifier, str):
            kind = cls._aliases.get(cls._normalize(identifier))
        else:
            kind = None
        if kind is None or kind not in cls._solvers:
            raise UnknownSolver(
                f"Unknown solver: {identifier!r}. Available: {cls.list_available()}"
            )
        return kind

    @classmethod
    def get(cls, identifier: "str | SolverKind") -> FieldSolver:
        """Get the backend for an identifier."""
        return cls._solvers[cls.resolve(identifier)]

    @classmethod
    def list_available(cls) -> list[str]:
        """List all registered solver names."""
        return [kind.value for kind in cls._solvers]

    @classmethod
    def is_empty(cls) -> bool:
        return not cls._solvers

    @classmethod
    def clear(cls) -> None:
        """Clear all registered solvers (mainly for testing)."""
        cls._solvers.clear()
        cls._aliases.clear()

    @staticmethod
    def _normalize(name: str) -> str:
        return name.strip().lower().replace("_", "-").replace(" ", "-")
