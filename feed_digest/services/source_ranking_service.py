"""
Source ranking for the enrichment budget.
Scores records by source authority, topic and headline keywords.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from feed_digest.models.content import RawRecord, ScoredRecord


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "scoring.yaml")


@dataclass
class ScoringConfig:
    priority_sources: List[str] = field(default_factory=lambda: [
        "OpenAI Blog",
        "Anthropic News",
        "Google DeepMind Blog",
        "Google Gemini",
        "Google AI Blog",
        "LangChain Blog",
        "Artificial Analysis",
        "MIT Technology Review",
        "The Rundown AI",
    ])
    priority_categories: List[str] = field(default_factory=lambda: ["agents", "ai"])
    boost_keywords: List[str] = field(default_factory=lambda: [
        "launch", "announce", "release", "new", "breakthrough",
        "gpt", "claude", "gemini", "agent", "llm",
    ])
    priority_source_weight: int = 100
    priority_category_weight: int = 50
    keyword_weight: int = 10

    @classmethod
    def from_yaml(cls, path: str) -> "ScoringConfig":
        """Load weights from YAML; keys missing from the file keep their defaults."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class SourceRankingService:
    """
    Deterministic scorer and stable ranker.

    Ties keep their input order, so callers sort by recency first.
    """

    def __init__(self, config: Optional[ScoringConfig] = None, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        if config is None:
            config = self._load_config(config_path or DEFAULT_CONFIG_PATH)
        self.config = config
        self._keywords = [k.lower() for k in config.boost_keywords]
        self._categories = set(config.priority_categories)

    def _load_config(self, config_path: str) -> ScoringConfig:
        try:
            config = ScoringConfig.from_yaml(config_path)
            self.logger.info(f"Loaded scoring config from {config_path}")
            return config
        except (OSError, yaml.YAMLError, TypeError) as e:
            self.logger.error(f"Failed to load scoring config: {e}")
            return ScoringConfig()

    def score(self, record: RawRecord) -> int:
        cfg = self.config
        score = 0
        if any(name in record.source_name for name in cfg.priority_sources):
            score += cfg.priority_source_weight
        if record.category.value in self._categories:
            score += cfg.priority_category_weight
        title = record.title.lower()
        score += cfg.keyword_weight * sum(1 for kw in self._keywords if kw in title)
        return score

    def rank(self, records: List[RawRecord]) -> List[ScoredRecord]:
        """Stable sort by score, descending."""
        scored = [ScoredRecord(record=r, score=self.score(r)) for r in records]
        return sorted(scored, key=lambda s: s.score, reverse=True)


def order_by_recency(records: List[RawRecord]) -> List[RawRecord]:
    return sorted(records, key=lambda r: r.published_at, reverse=True)
