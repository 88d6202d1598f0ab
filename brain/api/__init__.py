from brain.api import brain, health

__all__ = [
    "brain",
    "health",
]
