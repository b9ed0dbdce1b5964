"""
Process-wide fee routing parameters.

The routing configuration is seeded from ``RoutingDefaults`` at startup and
can be changed at runtime through ``update``. Nothing here is persisted;
every process starts from its own defaults.
"""

import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from ..errors import ValidationError

# JSON name -> attribute name
_FIELD_NAMES = {
    'minMixingRounds': 'min_mixing_rounds',
    'maxMixingRounds': 'max_mixing_rounds',
    'minDelayMinutes': 'min_delay_minutes',
    'maxDelayMinutes': 'max_delay_minutes',
    'maxWalletBalance': 'max_wallet_balance',
    'cycleIntervalHours': 'cycle_interval_hours',
    'enableAutomatedMixing': 'enable_automated_mixing',
    'completionDelaySeconds': 'completion_delay_seconds',
}


@dataclass(frozen=True)
class RoutingParameters:
    min_mixing_rounds: int = 3
    max_mixing_rounds: int = 7
    min_delay_minutes: int = 30
    max_delay_minutes: int = 180
    max_wallet_balance: int = 10_000_000
    cycle_interval_hours: int = 6
    enable_automated_mixing: bool = True
    completion_delay_seconds: int = 60

    def validate(self):
        errors = []
        for name in ('min_mixing_rounds', 'max_mixing_rounds', 'min_delay_minutes',
                     'max_delay_minutes', 'max_wallet_balance', 'cycle_interval_hours',
                     'completion_delay_seconds'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{name} must be an integer")
            elif value < 0:
                errors.append(f"{name} must not be negative")
        if not isinstance(self.enable_automated_mixing, bool):
            errors.append("enable_automated_mixing must be a boolean")
        if errors:
            raise ValidationError(', '.join(errors))

        if self.min_mixing_rounds > self.max_mixing_rounds:
            raise ValidationError("minMixingRounds cannot exceed maxMixingRounds")
        if self.min_delay_minutes > self.max_delay_minutes:
            raise ValidationError("minDelayMinutes cannot exceed maxDelayMinutes")
        if self.max_wallet_balance <= 0:
            raise ValidationError("maxWalletBalance must be positive")
        if self.cycle_interval_hours <= 0:
            raise ValidationError("cycleIntervalHours must be positive")

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        return {json_name: values[attr] for json_name, attr in _FIELD_NAMES.items()}


class RoutingConfig:
    """Mutable holder of the current RoutingParameters.

    Readers take a snapshot through ``current``; ``update`` swaps in a new
    validated snapshot, so a reader never observes a half-applied merge.
    """

    def __init__(self, parameters: Optional[RoutingParameters] = None):
        self._lock = threading.Lock()
        parameters = parameters or RoutingParameters()
        parameters.validate()
        self._parameters = parameters

    @classmethod
    def from_defaults(cls, defaults) -> 'RoutingConfig':
        """Build from a ``RoutingDefaults`` section of ProductionConfig."""
        return cls(RoutingParameters(**asdict(defaults)))

    @property
    def current(self) -> RoutingParameters:
        return self._parameters

    def update(self, changes: Dict[str, Any]) -> RoutingParameters:
        """Merge ``changes`` (JSON field names) into the current parameters."""
        if not isinstance(changes, dict):
            raise ValidationError("Invalid config format")

        unknown = sorted(key for key in changes if key not in _FIELD_NAMES)
        if unknown:
            raise ValidationError(f"Unknown config fields: {', '.join(unknown)}")

        with self._lock:
            merged = asdict(self._parameters)
            for json_name, value in changes.items():
                merged[_FIELD_NAMES[json_name]] = value
            parameters = RoutingParameters(**merged)
            parameters.validate()
            self._parameters = parameters
        return parameters

    def to_dict(self) -> Dict[str, Any]:
        return self._parameters.to_dict()
