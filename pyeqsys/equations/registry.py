"""Factory registry mapping physics-block tags to equation systems.

Functions
---------
register_equation_system
    Class decorator adding a system under a configuration tag.
available_equation_systems
    Sorted list of registered tags.
create_equation_system
    Build the system named by a tag from its configuration block.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from loguru import logger

from pyeqsys.equations.base import EquationSystem, SystemSettings
from pyeqsys.errors import UnknownEquationSystemError

_REGISTRY: dict[str, type[EquationSystem]] = {}


def register_equation_system(tag: str) -> Callable[[type[EquationSystem]], type[EquationSystem]]:
    """Register the decorated class under *tag*.

    Raises:
        ValueError: If *tag* is already taken by another class.
    """

    def decorator(cls: type[EquationSystem]) -> type[EquationSystem]:
        existing = _REGISTRY.get(tag)
        if existing is not None and existing is not cls:
            raise ValueError(f"Equation system tag {tag!r} already registered to {existing.__name__}")
        _REGISTRY[tag] = cls
        return cls

    return decorator


def available_equation_systems() -> list[str]:
    return sorted(_REGISTRY)


def create_equation_system(
    tag: str,
    eq_systems: Any,
    node: Mapping[str, Any],
    defaults: SystemSettings,
) -> EquationSystem:
    """Instantiate the system registered under *tag*.

    Args:
        tag: Physics-block tag, e.g. ``"HeatConduction"``.
        eq_systems: Owning driver.
        node: Body of the physics block.
        defaults: Settings inherited from the driver.

    Raises:
        UnknownEquationSystemError: If no system is registered under *tag*.
    """
    cls = _REGISTRY.get(tag)
    if cls is None:
        raise UnknownEquationSystemError(
            f"parser error EquationSystems::load: unknown equation system type {tag!r}; "
            f"available: {available_equation_systems()}"
        )
    logger.debug("eqSys = {}", tag)
    return cls.from_config(eq_systems, node, defaults)
