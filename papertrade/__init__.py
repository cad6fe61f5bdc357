"""Paper trading simulator: technical battle plans and autonomous TP/SL exits."""

__version__ = "1.0.0"
