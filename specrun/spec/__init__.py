"""Specification subsystem -- declarative task documents and their loader."""

from specrun.spec.loader import SpecificationLoader
from specrun.spec.models import (
    ActionSpec,
    Condition,
    GlobalConfiguration,
    Specification,
    TaskSpec,
    ValidationCriteria,
)

__all__ = [
    "ActionSpec",
    "Condition",
    "GlobalConfiguration",
    "Specification",
    "SpecificationLoader",
    "TaskSpec",
    "ValidationCriteria",
]
