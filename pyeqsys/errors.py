"""Exception hierarchy.

Classes
-------
PyEqsysError
    Root of every error raised by the package.
ConfigurationError
    Malformed or incomplete configuration; always fatal.
UnknownEquationSystemError
    A physics block names an equation-system tag with no registered builder.
SolverSpecificationError
    No linear-solver block is mapped to an equation name.
PartNotFoundError
    A named mesh part does not exist.
PartRankError
    A named mesh part exists but has the wrong entity rank.
FieldNotFoundError
    A field is not resident on the mesh.
"""

from __future__ import annotations


class PyEqsysError(Exception):
    """Base class for all package errors."""


class ConfigurationError(PyEqsysError, ValueError):
    """Raised for any fatal configuration problem."""


class UnknownEquationSystemError(ConfigurationError):
    """Raised when a physics block tag has no registered equation system."""


class SolverSpecificationError(ConfigurationError):
    """Raised when an equation has no linear-solver block mapped to it."""


class PartNotFoundError(ConfigurationError):
    """Raised when a part name resolves to nothing on the mesh.

    Args:
        name: The part name that was looked up.
    """

    def __init__(self, name: str) -> None:
        super().__init__(f"Sorry, no part name found by the name {name}")
        self.name = name


class PartRankError(ConfigurationError):
    """Raised when a part is found but its entity rank is not the expected one.

    Args:
        name: The part name.
        expected: Expected rank.
        actual: Rank of the part found on the mesh.
    """

    def __init__(self, name: str, expected: object, actual: object) -> None:
        super().__init__(
            f"Part {name!r} has rank {actual}, expected {expected}"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class FieldNotFoundError(ConfigurationError, KeyError):
    """Raised when a field is not registered on the mesh."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
