"""Priority shield and its daily history."""

from .calculator import ShieldCalculator, compute_shield, volume_based_percentile
from .history import ShieldHistory

__all__ = ["ShieldCalculator", "ShieldHistory", "compute_shield", "volume_based_percentile"]
