"""Engine thresholds resolved once at construction time."""

from __future__ import annotations

from dataclasses import dataclass, fields

from abuse_guard.core.config import RateLimitSettings


@dataclass(frozen=True)
class EngineConfig:
    """Tunables for the rate limit engine and its escalation policy.

    Built from ``RateLimitSettings`` in production; tests construct it
    directly to inject deterministic thresholds.
    """

    bypass: bool = False

    adaptive_enabled: bool = True
    adaptive_violation_threshold: int = 5
    adaptive_tightening_window: int = 300
    adaptive_tightening_duration: int = 3600
    adaptive_tightening_factor: float = 0.5

    captcha_enabled: bool = True
    captcha_provider: str = "hcaptcha"
    captcha_wallet_violation_threshold: int = 3
    captcha_violation_window: int = 3600
    captcha_required_ttl: int = 3600

    global_violation_threshold: int = 100
    global_tightening_factor: float = 0.5
    global_tightening_duration: int = 900

    violation_log_max_entries: int = 1000
    violation_log_ttl: int = 86400

    wallet_factor_ratio: float = 0.7
    email_factor_ratio: float = 0.7
    device_factor_ratio: float = 0.8

    stats_scan_limit: int = 10_000

    @classmethod
    def from_settings(cls, rate_limit_settings: RateLimitSettings) -> "EngineConfig":
        values = {
            f.name: getattr(rate_limit_settings, f.name)
            for f in fields(cls)
            if hasattr(rate_limit_settings, f.name)
        }
        return cls(**values)
