"""AG-Vote Core: meeting lifecycle, ballot pipeline and decision engine."""

__version__ = "0.1.0"
