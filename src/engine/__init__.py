from src.engine.classifier import classify, interval_for, read_velocity

__all__ = [
    "classify",
    "interval_for",
    "read_velocity",
]
