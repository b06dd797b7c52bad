"""
Realtime store providers
"""

from .memory import InMemoryStore

__all__ = ["InMemoryStore"]
