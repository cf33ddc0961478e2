"""Fields: named multi-state arrays on mesh entities."""

from pyeqsys.fields.field import Field, FieldManager, FieldState

__all__ = ["Field", "FieldManager", "FieldState"]
