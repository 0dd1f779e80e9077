"""Search configuration for DocBridge.

All relevance weights, fan-out limits and cache/tracker settings live here so
that they can be tuned without touching the ranking code.
"""

import os
import logging
from typing import Optional, Tuple

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class LocalScoringWeights(BaseModel):
    """Relevance weights for the local document corpus.

    The relative order of the per-signal bonuses is part of the ranking
    contract: phrase > title > description > exact keyword > partial keyword
    > content frequency cap > fuzzy.
    """
    phrase_match: float = Field(default=30.0, gt=0, description="Full query phrase found in the document")
    title_match: float = Field(default=15.0, gt=0, description="Per-term title match")
    description_match: float = Field(default=12.0, gt=0, description="Per-term description match")
    keyword_exact: float = Field(default=10.0, gt=0, description="Per-term exact keyword match")
    keyword_partial: float = Field(default=6.0, gt=0, description="Per-term substring keyword match")
    content_per_hit: float = Field(default=1.5, gt=0, description="Bonus per content occurrence")
    content_cap: float = Field(default=5.0, gt=0, description="Maximum content-frequency bonus per term")
    fuzzy_match: float = Field(default=2.0, gt=0, description="Edit-distance-1 match against a keyword or title word")
    fuzzy_min_length: int = Field(default=4, ge=2, description="Shortest word considered for fuzzy matching")
    short_document_chars: int = Field(default=2000, ge=0, description="Documents shorter than this get a focus bonus")
    short_document_factor: float = Field(default=1.1, ge=1.0)
    normalizer: float = Field(default=2.5, gt=0, description="Divisor mapping raw scores onto 0-100")
    min_relevance: float = Field(default=5.0, ge=0, description="Normalized score below which documents are dropped")
    snippet_length: int = Field(default=200, ge=40)
    snippet_lead: int = Field(default=50, ge=0, description="Context kept before the first match in a snippet")

    @model_validator(mode="after")
    def check_ordering(self) -> "LocalScoringWeights":
        ordered = [
            self.phrase_match,
            self.title_match,
            self.description_match,
            self.keyword_exact,
            self.keyword_partial,
            self.content_cap,
            self.fuzzy_match,
        ]
        if any(a <= b for a, b in zip(ordered, ordered[1:])):
            raise ValueError(
                "local weights must satisfy phrase > title > description > keyword_exact "
                "> keyword_partial > content_cap > fuzzy"
            )
        return self


class DocsetScoringWeights(BaseModel):
    """Relevance weights for docset name/type indexes."""
    exact_name: float = Field(default=200.0, gt=0, description="Fixed score for an exact full-phrase name match")
    all_terms: float = Field(default=50.0, gt=0, description="Bonus when every term appears in the name")
    token_match: float = Field(default=10.0, gt=0, description="Per-term exact token match")
    prefix_match: float = Field(default=7.0, gt=0, description="Per-term match at the start of the name")
    substring_match: float = Field(default=5.0, gt=0, description="Per-term match anywhere in the name")
    per_matched_term: float = Field(default=3.0, ge=0)
    length_penalty: float = Field(default=0.1, ge=0, description="Subtracted per name character")
    candidate_row_cap: int = Field(default=2000, ge=1, description="Most raw rows per candidate query handed to the scorer")
    canonical_markers: Tuple[str, ...] = Field(
        default=("language=swift",),
        description="Path fragments identifying the canonical variant of an entry",
    )

    @model_validator(mode="after")
    def check_ordering(self) -> "DocsetScoringWeights":
        ordered = [self.exact_name, self.all_terms, self.token_match, self.prefix_match, self.substring_match]
        if any(a <= b for a, b in zip(ordered, ordered[1:])):
            raise ValueError(
                "docset weights must satisfy exact_name > all_terms > token_match > prefix_match > substring_match"
            )
        return self


class MergeConfig(BaseModel):
    """Cross-corpus merge settings."""
    local_boost: float = Field(default=5.0, ge=1.0, description="Multiplier applied to local document scores")
    high_quality_score: float = Field(default=50.0, ge=0)
    high_quality_min_count: int = Field(default=5, ge=1)
    relative_cutoff: float = Field(default=0.1, ge=0, le=1.0, description="Fraction of the top score a result must reach")
    min_score_floor: float = Field(default=10.0, ge=0)


class FanOutConfig(BaseModel):
    """Parallel docset search settings."""
    adapter_timeout: float = Field(default=2.0, gt=0, description="Seconds allowed per adapter call")
    max_workers: int = Field(default=4, ge=1, description="Initial thread pool size for adapter calls")
    cache_max_size: int = Field(default=100, ge=1)
    cache_ttl: float = Field(default=300.0, gt=0, description="Seconds a cached fan-out result stays valid")
    explore_row_cap: int = Field(default=500, ge=1, description="Rows fetched per source during entity exploration")


class AttemptTrackerConfig(BaseModel):
    """Empty-search tracking settings."""
    threshold: int = Field(default=3, ge=1, description="Consecutive empty searches before suggesting a fallback")
    idle_window: float = Field(default=1800.0, gt=0, description="Seconds of inactivity before a counter is purged")


class SearchConfig(BaseModel):
    """Top-level DocBridge configuration."""
    local: LocalScoringWeights = Field(default_factory=LocalScoringWeights)
    docset: DocsetScoringWeights = Field(default_factory=DocsetScoringWeights)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    fanout: FanOutConfig = Field(default_factory=FanOutConfig)
    attempts: AttemptTrackerConfig = Field(default_factory=AttemptTrackerConfig)
    default_limit: int = Field(default=20, ge=1)
    sweep_interval: float = Field(default=300.0, gt=0, description="Seconds between cache/tracker sweeps")
    docs_path: Optional[str] = Field(default=None, description="Directory holding the local corpus")
    docsets_path: Optional[str] = Field(default=None, description="Directory holding installed docsets")

    @classmethod
    def from_env(cls) -> 'SearchConfig':
        """Create configuration from environment variables."""
        config = cls(
            fanout=FanOutConfig(
                adapter_timeout=float(os.getenv('DOCBRIDGE_ADAPTER_TIMEOUT', '2.0')),
                max_workers=int(os.getenv('DOCBRIDGE_MAX_WORKERS', '4')),
                cache_max_size=int(os.getenv('DOCBRIDGE_CACHE_SIZE', '100')),
                cache_ttl=float(os.getenv('DOCBRIDGE_CACHE_TTL', '300')),
            ),
            merge=MergeConfig(
                local_boost=float(os.getenv('DOCBRIDGE_LOCAL_BOOST', '5.0')),
            ),
            attempts=AttemptTrackerConfig(
                threshold=int(os.getenv('DOCBRIDGE_FALLBACK_THRESHOLD', '3')),
                idle_window=float(os.getenv('DOCBRIDGE_ATTEMPT_IDLE_WINDOW', '1800')),
            ),
            sweep_interval=float(os.getenv('DOCBRIDGE_SWEEP_INTERVAL', '300')),
            docs_path=os.getenv('DOCBRIDGE_DOCS_PATH'),
            docsets_path=os.getenv('DOCBRIDGE_DOCSETS_PATH'),
        )
        logger.debug(f"Search configuration loaded from environment: timeout={config.fanout.adapter_timeout}s")
        return config
