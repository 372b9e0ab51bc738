"""Configuration dataclasses for broadcast_qc."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class ProbeConfig:
    """Controls how ffmpeg/ffprobe are located and invoked."""

    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    timeout: float = 300.0
    max_output_bytes: int = 100 * 1024 * 1024
    retry_backoff: float = 0.25
    poll_interval: float = 0.05
    max_analysis_seconds: Optional[float] = 3600.0


@dataclass(frozen=True)
class DetectorConfig:
    """Thresholds shared by the event detectors.

    Percentages are applied to the luma scale of the stream (255 for 8-bit,
    1023 for 10-bit) so that the same rule holds at every bit depth.
    """

    flash_threshold_pct: float = 10.0
    dark_cap_pct: float = 80.0
    window: float = 1.0
    rate_threshold: float = 3.0
    scene_threshold: float = 0.3
    red_saturation_threshold: float = 0.6
    red_rate_threshold: float = 3.0
    legal_min_8bit: float = 16.0
    legal_max_8bit: float = 235.0
    min_luminance_span: float = 0.2
    afd_change_interval: float = 1.0
    afd_probe_frames: int = 100

    def flash_threshold(self, luma_max: float) -> float:
        return luma_max * self.flash_threshold_pct / 100

    def dark_cap(self, luma_max: float) -> float:
        return luma_max * self.dark_cap_pct / 100


@dataclass(frozen=True)
class ScoringConfig:
    """Knobs for severity buckets, risk weighting and the compliance penalty model."""

    # (threshold, label) pairs, checked from the top down
    severity_rate_breakpoints: Tuple[Tuple[float, str], ...] = (
        (25.0, 'extreme'),
        (10.0, 'high'),
        (5.0, 'medium'),
    )
    risk_level_breakpoints: Tuple[Tuple[float, str], ...] = (
        (20.0, 'low'),
        (50.0, 'medium'),
        (80.0, 'high'),
    )
    max_weight: float = 0.7
    avg_weight: float = 0.3
    flash_risk_weight: float = 20.0
    red_flash_risk_weight: float = 25.0
    penalties: Mapping[str, float] = field(
        default_factory=lambda: {
            'flash': 20.0,
            'red_flash': 30.0,
            'luminance_range': 10.0,
            'afd': 10.0,
        }
    )
    full_compliance_min: float = 90.0
    partial_compliance_min: float = 70.0
    rejection_below: float = 50.0
    warning_risk_above: float = 30.0
    # Heuristic quality figures are only reported when explicitly configured.
    analysis_accuracy: Optional[float] = None
    confidence_level: Optional[float] = None
    false_positive_rate: Optional[float] = None
    false_negative_rate: Optional[float] = None

    def quality_metrics(self) -> Optional[dict]:
        metrics = {
            'analysis_accuracy': self.analysis_accuracy,
            'confidence_level': self.confidence_level,
            'false_positive_rate': self.false_positive_rate,
            'false_negative_rate': self.false_negative_rate,
        }
        configured = {key: value for key, value in metrics.items() if value is not None}
        return configured or None


@dataclass(frozen=True)
class EngineConfig:
    """High-level knobs for an analysis run."""

    probe: ProbeConfig = field(default_factory=ProbeConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    max_parallel: int = 4
    default_time_budget: float = 600.0
    category_timeout: Optional[float] = None
    collect_grace: float = 2.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        """Build a config, letting BROADCAST_QC_* variables override defaults."""

        env = os.environ if environ is None else environ
        cfg = cls()
        probe = cfg.probe
        if env.get('BROADCAST_QC_FFMPEG'):
            probe = replace(probe, ffmpeg_path=env['BROADCAST_QC_FFMPEG'])
        if env.get('BROADCAST_QC_FFPROBE'):
            probe = replace(probe, ffprobe_path=env['BROADCAST_QC_FFPROBE'])
        overrides = {}
        if env.get('BROADCAST_QC_MAX_PARALLEL'):
            overrides['max_parallel'] = int(env['BROADCAST_QC_MAX_PARALLEL'])
        if env.get('BROADCAST_QC_TIME_BUDGET'):
            overrides['default_time_budget'] = float(env['BROADCAST_QC_TIME_BUDGET'])
        return replace(cfg, probe=probe, **overrides)
