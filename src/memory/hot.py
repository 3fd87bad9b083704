"""
Hot Memory
==========

Small, always-included context about the user:
- Profile header
- Top interests by engagement
- Most frequently referenced facts
- Excerpts of the latest conversations

Rebuilt from the store on every call so it always reflects the latest facts.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from src.knowledge.config import TierConfig
from src.knowledge.models import DocType, Document, Fact, Interest, UserProfile
from src.knowledge.store import Collections, KnowledgeStore

logger = logging.getLogger(__name__)

PROFILE_KEY = "user"


@dataclass
class ConversationExcerpt:
    id: str
    date: str
    excerpt: str


@dataclass
class HotMemory:
    """Snapshot of the Hot tier."""
    profile: UserProfile
    facts: List[Fact] = field(default_factory=list)
    interests: List[Interest] = field(default_factory=list)
    conversations: List[ConversationExcerpt] = field(default_factory=list)

    def format(self) -> str:
        """Render as the prompt section prepended to every model call."""
        lines = [
            "# USER PROFILE",
            f"Name: {self.profile.name or 'User'}",
            f"Days Together: {self.profile.days_active}",
        ]
        if self.profile.summary:
            lines.append(self.profile.summary)

        lines += ["", "# TOP INTERESTS"]
        lines += [f"- {i.name} ({round(i.engagement_score * 100)}% engagement)" for i in self.interests] or ["- (none yet)"]

        lines += ["", "# KEY FACTS (Most Frequently Referenced)"]
        lines += [f"- {f.subject}: {f.text}" for f in self.facts] or ["- (none yet)"]

        lines += ["", "# RECENT CONVERSATION CONTEXT"]
        lines += [f"[{c.date}] {c.excerpt}" for c in self.conversations] or ["(no conversations yet)"]

        lines += ["", 'This is your "hot memory" - core context always available about the user.']
        return "\n".join(lines)


def rank_facts(facts: List[Fact], limit: int) -> List[Fact]:
    """Active facts by access count desc; ties go to the most recently accessed."""
    active = [f for f in facts if f.status == "active"]
    active.sort(
        key=lambda f: (
            f.access_count,
            f.last_accessed.timestamp() if f.last_accessed else float("-inf"),
        ),
        reverse=True,
    )
    return active[:limit]


class HotMemoryBuilder:
    """Assembles the Hot tier from facts, interests, profile and conversations."""

    def __init__(
        self,
        store: KnowledgeStore,
        config: Optional[TierConfig] = None,
    ):
        self.store = store
        self.config = config or TierConfig()

    def snapshot(self) -> HotMemory:
        profile_record = self.store.get(Collections.PROFILE, PROFILE_KEY)
        profile = UserProfile.from_record(profile_record) if profile_record else UserProfile()

        facts = [Fact.from_record(r) for r in self.store.get_all(Collections.FACTS)]
        interests = [Interest.from_record(r) for r in self.store.get_all(Collections.INTERESTS)]
        interests.sort(key=lambda i: i.engagement_score, reverse=True)

        return HotMemory(
            profile=profile,
            facts=rank_facts(facts, self.config.hot_facts),
            interests=interests[:self.config.hot_interests],
            conversations=self._recent_conversations(),
        )

    def build(self) -> str:
        memory = self.snapshot()
        logger.debug(
            f"Hot memory: {len(memory.facts)} facts, {len(memory.interests)} interests, "
            f"{len(memory.conversations)} conversations"
        )
        return memory.format()

    def _recent_conversations(self) -> List[ConversationExcerpt]:
        conversations = [
            Document.from_record(r)
            for r in self.store.get_all(Collections.DOCUMENTS)
            if r["doc_type"] == DocType.CONVERSATION.value
        ]
        conversations.sort(key=lambda d: d.created_at, reverse=True)

        limit = self.config.excerpt_chars
        excerpts = []
        for doc in conversations[:self.config.hot_conversations]:
            text = " ".join(doc.content.split())
            if not text:
                text = "No summary available"
            elif len(text) > limit:
                text = text[:limit] + "..."
            excerpts.append(ConversationExcerpt(doc.id, doc.created_at.date().isoformat(), text))
        return excerpts
