"""
Memory lifecycle.

- MemoryManager: create, recall (with decay), reinforce, weaken, learn from feedback
- Feedback archetypes: corrections that become specialized vendor memories
- KeyedLock: per-memory mutation serialization
"""

from .archetypes import ARCHETYPES, FeedbackArchetype, match_archetype
from .locks import KeyedLock
from .manager import HUMAN_REVIEW_SCENARIO, MemoryManager

__all__ = [
    "ARCHETYPES",
    "FeedbackArchetype",
    "HUMAN_REVIEW_SCENARIO",
    "KeyedLock",
    "MemoryManager",
    "match_archetype",
]
