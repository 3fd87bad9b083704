"""
Cold Tier Consolidation
=======================

Monthly job that compresses aged Warm content into Cold archive summaries.

Flow:
1. Reconcile archives whose items were not all marked Cold (crash recovery)
2. Select items older than `cold_age_days` that are not Cold yet
3. Group them by month into batches of at most `consolidation_batch_size`
4. Per batch: summarize -> embed summary -> write ArchiveEntry ->
   purge each item's chunks -> mark the item Cold, under the item's
   document lock and only if it was not re-saved during summarization
5. Append one CompressionJobRecord for the run

A failed batch is recorded and skipped; the rest of the run continues.
The job can be stopped between batches and never runs twice at once.
"""

import hashlib
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from src.ai.llm_client import LLMClient
from src.cache.redis_lock import JobLock
from src.knowledge.config import TierConfig
from src.knowledge.embedder import Embedder
from src.knowledge.errors import KnowledgeError, ModelUnavailable, StalePlanError
from src.knowledge.indexer import DocumentLocks
from src.knowledge.models import (
    ArchiveEntry,
    CompressionJobRecord,
    Document,
    MemoryTier,
    MemoryTierEntry,
    ProcessingStatus,
    utcnow,
)
from src.knowledge.store import Collections, KnowledgeStore

logger = logging.getLogger(__name__)


SUMMARY_SYSTEM_PROMPT = """You compress a person's saved notes, bookmarks and conversations into a
long-term memory archive. Keep names, dates, decisions, preferences and outcomes.
Drop pleasantries and repetition. Write plain prose, no headings."""


class Summarizer:
    """Summarization capability used for Cold tier compression."""

    def __init__(self, llm: LLMClient, max_tokens: int = 500, max_input_chars: int = 12000):
        self.llm = llm
        self.max_tokens = max_tokens
        self.max_input_chars = max_input_chars

    def summarize(self, documents: List[Document], period: str, target_chars: int) -> str:
        """
        Summarize a batch of documents.

        Args:
            documents: Items of one batch
            period: Month the items belong to (YYYY-MM)
            target_chars: Approximate length of the summary

        Returns:
            Summary text

        Raises:
            ModelUnavailable: If the LLM fails or returns nothing
        """
        per_item = max(self.max_input_chars // max(len(documents), 1), 200)
        sections = []
        for doc in documents:
            body = doc.content[:per_item]
            sections.append(f"## {doc.title} ({doc.doc_type.value}, {doc.created_at.date().isoformat()})\n{body}")

        prompt = (
            f"Summarize these {len(documents)} items from {period} in about {target_chars} characters, "
            f"preserving key facts, decisions, and outcomes:\n\n" + "\n\n".join(sections)
        )

        response = self.llm.generate(
            prompt=prompt,
            system=SUMMARY_SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
        )
        summary = response.content.strip()
        if not summary:
            raise ModelUnavailable("LLM returned an empty summary", capability="summarization")
        return summary


@dataclass
class ConsolidationBatch:
    """Items of one month that will share one archive entry."""
    period: str
    item_ids: List[str]
    titles: List[str]
    original_size: int

    @property
    def archive_id(self) -> str:
        digest = hashlib.sha256(",".join(self.item_ids).encode("utf-8")).hexdigest()[:12]
        return f"archive_{self.period}_{digest}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "item_ids": list(self.item_ids),
            "titles": list(self.titles),
            "original_size": self.original_size,
            "archive_id": self.archive_id,
        }


@dataclass
class ConsolidationPlan:
    """Preview of what a run would archive, with a confirmation token."""
    cutoff: datetime
    batches: List[ConsolidationBatch] = field(default_factory=list)

    @property
    def token(self) -> str:
        payload = json.dumps([[b.period, b.item_ids] for b in self.batches])
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @property
    def total_items(self) -> int:
        return sum(len(b.item_ids) for b in self.batches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "cutoff": self.cutoff.isoformat(),
            "total_items": self.total_items,
            "batches": [b.to_dict() for b in self.batches],
        }


@dataclass
class ConsolidationResult:
    """Outcome of one consolidation run."""
    job_id: Optional[str]
    status: str  # completed | partial | interrupted | skipped
    items_archived: int = 0
    batches_completed: int = 0
    batches_failed: int = 0
    items_reconciled: int = 0
    archive_size: int = 0
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "items_archived": self.items_archived,
            "batches_completed": self.batches_completed,
            "batches_failed": self.batches_failed,
            "items_reconciled": self.items_reconciled,
            "archive_size": self.archive_size,
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 2),
        }


def _same_version(seen: Document, current: Document) -> bool:
    """True when the stored document is still the one that was summarized."""
    return (
        current.status == seen.status
        and current.processed_at == seen.processed_at
        and current.content == seen.content
    )


def _resaved_since(doc: Document, entry: ArchiveEntry) -> bool:
    if doc.status == ProcessingStatus.PROCESSING:
        return True
    return bool(doc.processed_at and doc.processed_at > entry.created_at)


class ConsolidationJob:
    """
    Moves aged Warm content to the Cold tier.

    Safe to re-run: Cold and already-archived items are never selected
    again, and items of an archive written before a crash are marked Cold
    on the next run.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        summarizer: Summarizer,
        config: Optional[TierConfig] = None,
        lock: Optional[JobLock] = None,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[DocumentLocks] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.summarizer = summarizer
        self.config = config or TierConfig()
        self.lock = lock or JobLock("consolidation")
        self.clock = clock
        # Must be the indexer's registry so re-saves and archiving never interleave
        self.locks = locks or DocumentLocks()

        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self.lock.locked

    def stop(self) -> None:
        """Ask a running job to stop before its next batch."""
        logger.info("Consolidation stop requested")
        self._stop.set()

    # =========================================================================
    # PLANNING
    # =========================================================================

    def plan(self) -> ConsolidationPlan:
        """Compute which items a run started now would archive."""
        cutoff = self.clock() - timedelta(days=self.config.cold_age_days)
        cold = self._cold_ids()
        archived = {i for _, ids in self._unreconciled(cold) for i in ids}

        eligible: List[Document] = []
        for record in self.store.get_all(Collections.DOCUMENTS):
            doc = Document.from_record(record)
            if doc.id in cold or doc.id in archived:
                continue
            if doc.status == ProcessingStatus.PROCESSING:
                continue
            if doc.created_at < cutoff:
                eligible.append(doc)

        eligible.sort(key=lambda d: (d.created_at, d.id))

        by_period: Dict[str, List[Document]] = {}
        for doc in eligible:
            by_period.setdefault(doc.created_at.strftime("%Y-%m"), []).append(doc)

        size = self.config.consolidation_batch_size
        batches = []
        for period, docs in sorted(by_period.items()):
            for i in range(0, len(docs), size):
                group = docs[i:i + size]
                batches.append(ConsolidationBatch(
                    period=period,
                    item_ids=[d.id for d in group],
                    titles=[d.title for d in group],
                    original_size=sum(len(d.content) for d in group),
                ))

        return ConsolidationPlan(cutoff=cutoff, batches=batches)

    def _cold_ids(self) -> Set[str]:
        return {
            r["content_id"]
            for r in self.store.get_all(Collections.TIERS)
            if r["tier"] == MemoryTier.COLD.value
        }

    def _unreconciled(self, cold: Set[str]) -> List[Tuple[ArchiveEntry, List[str]]]:
        """Archives with items that should be Cold but are not marked yet."""
        found = []
        for record in self.store.get_all(Collections.ARCHIVES):
            entry = ArchiveEntry.from_record(record)
            pending = []
            for item_id in entry.source_ids:
                if item_id in cold:
                    continue
                doc_record = self.store.get(Collections.DOCUMENTS, item_id)
                if doc_record is None:
                    continue
                doc = Document.from_record(doc_record)
                # Re-saved after archiving: the item is live in Warm again
                if _resaved_since(doc, entry):
                    continue
                pending.append(item_id)
            if pending:
                found.append((entry, pending))
        return found

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def run(self) -> ConsolidationResult:
        """Run the job now. Returns a 'skipped' result if a run is in progress."""
        return self._run(expected_token=None)

    def commit(self, token: str) -> ConsolidationResult:
        """
        Run the job only if the current plan still matches a previewed one.

        Raises:
            StalePlanError: If the plan changed since the token was issued
        """
        return self._run(expected_token=token)

    def _run(self, expected_token: Optional[str]) -> ConsolidationResult:
        if not self.lock.acquire():
            logger.warning("Consolidation already running, skipping")
            return ConsolidationResult(job_id=None, status="skipped")

        try:
            self._stop.clear()
            return self._run_locked(expected_token)
        finally:
            self.lock.release()

    def _run_locked(self, expected_token: Optional[str]) -> ConsolidationResult:
        started = time.monotonic()
        ran_at = self.clock()
        job_id = f"consolidation_{ran_at.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"

        plan = self.plan()
        if expected_token is not None and plan.token != expected_token:
            raise StalePlanError("Consolidation plan changed since it was previewed; plan again")

        result = ConsolidationResult(job_id=job_id, status="completed")
        result.items_reconciled = self._reconcile()

        logger.info(
            f"Consolidation {job_id}: {plan.total_items} items in {len(plan.batches)} batches "
            f"(cutoff {plan.cutoff.date().isoformat()})",
            extra={"job_id": job_id, "tier": MemoryTier.COLD.value},
        )

        interrupted = False
        for batch in plan.batches:
            if self._stop.is_set():
                interrupted = True
                logger.info(f"Consolidation {job_id} stopped before batch {batch.archive_id}")
                break

            try:
                archived = self._archive_batch(batch)
                result.batches_completed += 1
                result.items_archived += archived
            except KnowledgeError as e:
                result.batches_failed += 1
                result.errors.append(f"{batch.archive_id}: {e}")
                logger.error(
                    f"Consolidation batch {batch.archive_id} failed: {e}",
                    extra={"job_id": job_id, "batch_id": batch.archive_id},
                )

        result.archive_size = self.store.count(Collections.ARCHIVES)
        result.duration_seconds = time.monotonic() - started
        if interrupted:
            result.status = "interrupted"
        elif result.batches_failed:
            result.status = "partial"

        record = CompressionJobRecord(
            id=job_id,
            ran_at=ran_at,
            items_archived=result.items_archived,
            batches_completed=result.batches_completed,
            batches_failed=result.batches_failed,
            archive_size=result.archive_size,
            errors=result.errors,
            interrupted=interrupted,
        )
        self.store.append(Collections.JOBS, job_id, record.to_record())

        logger.info(
            f"Consolidation {job_id} {result.status}: {result.items_archived} items archived, "
            f"{result.batches_failed} batches failed",
            extra={"job_id": job_id, "duration": result.duration_seconds},
        )
        return result

    def _archive_batch(self, batch: ConsolidationBatch) -> int:
        snapshot: Dict[str, Document] = {}
        for item_id in batch.item_ids:
            record = self.store.get(Collections.DOCUMENTS, item_id)
            if record is None:
                continue
            doc = Document.from_record(record)
            # Being re-indexed right now; a later run picks it up
            if doc.status == ProcessingStatus.PROCESSING:
                continue
            snapshot[doc.id] = doc
        if not snapshot:
            return 0

        documents = list(snapshot.values())
        read_at = self.clock()
        original_size = sum(len(d.content) for d in documents)
        target_chars = max(self.config.min_summary_chars, int(original_size / self.config.compression_ratio))

        summary = self.summarizer.summarize(documents, batch.period, target_chars)
        embedding = self.embedder.embed(summary)

        entry = ArchiveEntry(
            id=batch.archive_id,
            period=batch.period,
            source_ids=[d.id for d in documents],
            summary=summary,
            embedding=embedding,
            original_size=original_size,
            compressed_size=len(summary),
            source_titles=[d.title for d in documents],
            created_at=read_at,
        )
        # Archive first: if we crash below, the next run reconciles from it
        self.store.put(Collections.ARCHIVES, entry.id, entry.to_record())

        archived = [
            doc for doc in documents
            if self._mark_cold(entry, doc.id, lambda current, seen=doc: _same_version(seen, current))
        ]
        if len(archived) < len(documents):
            self._drop_changed_sources(entry, archived)
            if not archived:
                return 0

        logger.info(
            f"Archived {len(archived)} items for {batch.period} "
            f"({original_size} -> {len(summary)} chars, ratio {entry.compression_ratio})",
            extra={"batch_id": entry.id, "tier": MemoryTier.COLD.value},
        )
        return len(archived)

    def _drop_changed_sources(self, entry: ArchiveEntry, archived: List[Document]) -> None:
        """Keep only the items actually moved to Cold in the archive entry."""
        changed = len(entry.source_ids) - len(archived)
        logger.warning(
            f"{changed} items of {entry.id} were re-saved during summarization and stay in Warm",
            extra={"batch_id": entry.id},
        )
        if not archived:
            self.store.delete(Collections.ARCHIVES, entry.id)
            return
        entry.source_ids = [d.id for d in archived]
        entry.source_titles = [d.title for d in archived]
        self.store.put(Collections.ARCHIVES, entry.id, entry.to_record())

    def _mark_cold(
        self,
        entry: ArchiveEntry,
        item_id: str,
        is_current: Callable[[Document], bool],
    ) -> bool:
        """
        Purge an item's chunks and mark it Cold, under its document lock.

        Returns False, leaving the item untouched, when it was deleted or
        when `is_current` rejects its stored version.
        """
        with self.locks.hold(item_id):
            record = self.store.get(Collections.DOCUMENTS, item_id)
            if record is None or not is_current(Document.from_record(record)):
                return False

            self.store.delete_document_chunks(item_id)
            tier_entry = MemoryTierEntry(
                content_id=item_id,
                tier=MemoryTier.COLD,
                archive_id=entry.id,
                compression_ratio=entry.compression_ratio,
                updated_at=self.clock(),
            )
            self.store.put(Collections.TIERS, item_id, tier_entry.to_record())
            return True

    def _reconcile(self) -> int:
        """Finish archives whose items were not all marked Cold. Returns items fixed."""
        fixed = 0
        for entry, pending in self._unreconciled(self._cold_ids()):
            marked = [
                item_id for item_id in pending
                if self._mark_cold(entry, item_id, lambda current, e=entry: not _resaved_since(current, e))
            ]
            fixed += len(marked)
            logger.warning(f"Reconciled {len(marked)} items of {entry.id}", extra={"batch_id": entry.id})
        return fixed

    def history(self, limit: int = 10) -> List[CompressionJobRecord]:
        """Most recent job records first."""
        records = [CompressionJobRecord.from_record(r) for r in self.store.get_all(Collections.JOBS)]
        records.sort(key=lambda r: r.ran_at, reverse=True)
        return records[:limit]
