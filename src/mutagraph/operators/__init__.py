"""Declarative mutation operators and presets."""

from mutagraph.operators.catalog import CATALOG, PRESETS, get_operator, select_operators
from mutagraph.operators.models import EquivalenceRule, Operator

__all__ = [
    "CATALOG",
    "EquivalenceRule",
    "Operator",
    "PRESETS",
    "get_operator",
    "select_operators",
]
