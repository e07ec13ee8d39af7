"""Persistence port and its implementations."""

from .base import StpRepository
from .memory import InMemoryStpRepository

__all__ = ["StpRepository", "InMemoryStpRepository"]
