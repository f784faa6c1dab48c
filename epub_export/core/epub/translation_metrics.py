"""Translation statistics aggregated over the exported chapters.

Feeds the title page and the statistics/acknowledgments page.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .models import CollectedChapter


@dataclass
class UsageBreakdown:
    """Usage totals for one provider or one model."""
    chapters: int = 0
    cost: float = 0.0
    time: float = 0.0
    tokens: int = 0

    def add(self, cost: float, time: float, tokens: int) -> None:
        self.chapters += 1
        self.cost += cost
        self.time += time
        self.tokens += tokens


@dataclass
class TranslationStats:
    """Aggregated translation statistics.

    Tracks counts, cost, timing and token usage with per-provider and
    per-model breakdowns.
    """
    # === Counts ===
    chapter_count: int = 0
    image_count: int = 0

    # === Totals ===
    total_cost: float = 0.0
    total_time: float = 0.0
    """Sum of translation request times in seconds"""
    total_tokens: int = 0

    # === Breakdowns ===
    provider_breakdown: Dict[str, UsageBreakdown] = field(default_factory=dict)
    model_breakdown: Dict[str, UsageBreakdown] = field(default_factory=dict)

    def record_chapter(self, chapter: CollectedChapter) -> None:
        """Record one exported chapter.

        Args:
            chapter: Chapter whose translation metadata is added to the totals
        """
        self.chapter_count += 1
        info = chapter.translation
        if info is None:
            return

        self.total_cost += info.cost_usd
        self.total_time += info.request_time_sec
        self.total_tokens += info.total_tokens

        self.provider_breakdown.setdefault(info.provider, UsageBreakdown()).add(
            info.cost_usd, info.request_time_sec, info.total_tokens
        )
        self.model_breakdown.setdefault(info.model, UsageBreakdown()).add(
            info.cost_usd, info.request_time_sec, info.total_tokens
        )

    def top_models(self, limit: int = 10) -> List[Tuple[str, UsageBreakdown]]:
        """Most used models, by chapter count."""
        ranked = sorted(self.model_breakdown.items(), key=lambda item: item[1].chapters, reverse=True)
        return ranked[:limit]

    @property
    def avg_cost_per_chapter(self) -> float:
        if self.chapter_count == 0:
            return 0.0
        return self.total_cost / self.chapter_count

    def to_dict(self) -> Dict:
        """Convert statistics to dictionary for serialization."""
        return {
            "chapter_count": self.chapter_count,
            "image_count": self.image_count,
            "total_cost": self.total_cost,
            "total_time": self.total_time,
            "total_tokens": self.total_tokens,
            "avg_cost_per_chapter": self.avg_cost_per_chapter,
            "provider_breakdown": {k: vars(v) for k, v in self.provider_breakdown.items()},
            "model_breakdown": {k: vars(v) for k, v in self.model_breakdown.items()},
        }

    def log_summary(self, log_callback=None) -> str:
        """Build (and optionally log) a text summary.

        Args:
            log_callback: Optional callback(key, message)
        """
        summary = f"""
=== Translation Statistics ===
Chapters: {self.chapter_count}
Images: {self.image_count}
Total Cost: ${self.total_cost:.4f}
Total Time: {self.total_time:.1f}s
Total Tokens: {self.total_tokens:,}
"""
        for provider, usage in self.provider_breakdown.items():
            summary += f"  {provider}: {usage.chapters} chapters, ${usage.cost:.4f}\n"

        if log_callback:
            log_callback("translation_stats", summary)
        return summary


def calculate_translation_stats(chapters: Iterable[CollectedChapter], image_count: int = 0) -> TranslationStats:
    """Aggregate statistics for a set of chapters.

    Args:
        chapters: Chapters being exported
        image_count: Number of embedded illustrations

    Returns:
        TranslationStats
    """
    stats = TranslationStats(image_count=image_count)
    for chapter in chapters:
        stats.record_chapter(chapter)
    return stats
