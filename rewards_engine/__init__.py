"""Activity completion engine for a promotions dashboard."""

__version__ = "0.3.0"
