"""Cross-corpus merge of local and docset results."""

import logging
from typing import List, Optional, Sequence

from config.search import MergeConfig
from indexer.models import ExternalResult, LocalResult, Origin, ScoredResult, dedupe_entries

logger = logging.getLogger(__name__)


class RankingMerger:
    """Combines both corpora into one deterministic, quality-filtered ranking.

    Local documents are boosted so project guidance outranks generic API
    reference at comparable relevance. The merger is pure: identical inputs
    always produce the identical ordered list.
    """

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or MergeConfig()

    def combine(self, local_results: Sequence[LocalResult], external_results: Sequence[ExternalResult],
                query: str = "") -> List[ScoredResult]:
        boost = self.config.local_boost
        merged = [r.to_scored().with_score(round(r.score * boost, 4)) for r in local_results]

        # The same API element may come from several docsets
        merged.extend(entry.to_scored() for entry in dedupe_entries(external_results).values())

        needle = " ".join((query or "").lower().split())
        merged.sort(key=lambda r: self.sort_key(r, needle))
        filtered = self.apply_quality_filter(merged)

        if len(filtered) < len(merged):
            logger.debug(f"Quality filter kept {len(filtered)} of {len(merged)} results")
        return filtered

    @staticmethod
    def sort_key(result: ScoredResult, query: str = ""):
        return (
            -result.score,
            0 if result.origin is Origin.LOCAL else 1,
            0 if query and result.title.lower() == query else 1,
            len(result.title),
            result.title,
            result.source_id,
            result.entry_id,
        )

    def apply_quality_filter(self, ranked: List[ScoredResult]) -> List[ScoredResult]:
        """Drop weak results relative to what the query produced.

        With enough high-quality hits only those are kept; otherwise anything
        under a fraction of the top score (never below the floor) goes.
        ``ranked`` must already be sorted best first.
        """
        if not ranked:
            return []

        cfg = self.config
        high_quality = [r for r in ranked if r.score >= cfg.high_quality_score]
        if len(high_quality) >= cfg.high_quality_min_count:
            return high_quality

        cutoff = max(ranked[0].score * cfg.relative_cutoff, cfg.min_score_floor)
        return [r for r in ranked if r.score >= cutoff]
