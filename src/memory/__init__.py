"""
Memory Module
=============

Three-tier personal memory:
- Hot: profile, top facts, interests, latest conversations (always in context)
- Warm: chunk index of saved content (similarity search)
- Cold: monthly LLM-compressed archives of content older than ~3 months

MemoryService wires the tiers, routing and consolidation together.
"""

from .hot import HotMemory, HotMemoryBuilder, rank_facts
from .manager import TieredMemoryManager
from .consolidation import (
    ConsolidationJob,
    ConsolidationPlan,
    ConsolidationResult,
    Summarizer,
)

__all__ = [
    "HotMemory",
    "HotMemoryBuilder",
    "rank_facts",
    "TieredMemoryManager",
    "ConsolidationJob",
    "ConsolidationPlan",
    "ConsolidationResult",
    "Summarizer",
]
