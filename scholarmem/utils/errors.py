"""
Exception taxonomy shared by all ScholarMem components.
"""


class ScholarMemError(Exception):
    """Base exception for the memory layer."""
    pass


class ValidationError(ScholarMemError):
    """Malformed entity, relationship or action shape. Never retried."""
    pass


class InvalidAction(ValidationError):
    """Reasoning service produced an action outside the closed action schema."""
    pass


class ServiceUnavailable(ScholarMemError):
    """Embedding or reasoning provider is unreachable or misconfigured.

    Callers are expected to degrade (skip detection, drop context augmentation,
    fall back to cache-only) instead of failing the whole request.
    """
    pass


class StoreError(ScholarMemError):
    """Persistent store failure."""
    pass


class DimensionMismatch(ScholarMemError):
    """Two vectors that must share dimensionality do not."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f'Embedding dimension mismatch: {left} != {right}')
