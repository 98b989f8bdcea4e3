"""Historic projection of live entities."""

from timetravel.historic.snapshot import AttributeSnapshot
from timetravel.historic.projection import FilterNotSupportedError, HistoricAttributes

__all__ = [
    "AttributeSnapshot",
    "FilterNotSupportedError",
    "HistoricAttributes",
]
