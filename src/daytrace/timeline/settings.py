"""Explicit settings value passed into the timeline builder."""

from __future__ import annotations

from dataclasses import dataclass

from daytrace.config import AppConfig, GapFillPreference

PREFERENCE_OFFSETS = {
    GapFillPreference.CONSERVATIVE: 0.1,
    GapFillPreference.BALANCED: 0.0,
    GapFillPreference.AGGRESSIVE: -0.1,
    GapFillPreference.MANUAL: 0.0,
}


@dataclass(frozen=True)
class TimelineSettings:
    """Thresholds and preferences for one timeline build.

    Defaults match :class:`~daytrace.config.ThresholdsConfig` and
    :class:`~daytrace.config.GapFillingConfig`.
    """

    min_evidence_block_minutes: int = 10
    distraction_minutes: int = 10
    screen_time_merge_gap: int = 15
    sleep_merge_gap: int = 5
    sleep_max_start_offset: int = 120
    sleep_min_remaining: int = 30
    planned_overlap_minutes: int = 5
    committed_overlap_minutes: int = 10
    dedup_overlap_minutes: int = 10
    extension_min_minutes: int = 10
    commute_min_gap: int = 15
    commute_max_gap: int = 90
    prep_min_gap: int = 10
    prep_max_gap: int = 45
    fusion_distraction_minutes: int = 20
    pattern_override_confidence: float = 0.8
    preference: GapFillPreference = GapFillPreference.BALANCED
    confidence_threshold: float = 0.6
    pattern_min_confidence: float | None = 0.6
    allow_auto_suggestions: bool = True

    @classmethod
    def from_config(cls, config: AppConfig) -> TimelineSettings:
        thresholds = config.thresholds.model_dump()
        gap = config.gap_filling
        return cls(
            **thresholds,
            preference=gap.preference,
            confidence_threshold=gap.confidence_threshold,
            pattern_min_confidence=gap.pattern_min_confidence,
            allow_auto_suggestions=gap.allow_auto_suggestions,
        )

    @property
    def is_manual(self) -> bool:
        return self.preference == GapFillPreference.MANUAL

    @property
    def is_aggressive(self) -> bool:
        return self.preference == GapFillPreference.AGGRESSIVE

    @property
    def pattern_threshold(self) -> float:
        """Pattern confidence needed to relabel unknown time.

        ``clamp(max(pattern_min or 0.6, confidence_threshold + offset), 0.4, 0.95)``
        where the offset is +0.1 conservative and -0.1 aggressive.
        """
        base = self.pattern_min_confidence if self.pattern_min_confidence else 0.6
        threshold = max(base, self.confidence_threshold + PREFERENCE_OFFSETS[self.preference])
        return min(0.95, max(0.4, threshold))
