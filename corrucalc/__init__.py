"""CorruCalc - corrugated box quoting engine."""

__version__ = "1.0.0"
