"""Environment-driven settings for the ResQEd risk service."""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, List

from dotenv import load_dotenv

from app.risk import (
    DEFAULT_RISK_CONFIG,
    RiskRuleConfig,
    SchedulingPolicyConfig,
)

# Load environment variables
load_dotenv()


def parse_pairs(value: str) -> Dict[str, float]:
    """
    Parse 'key:value,key:value' strings used by the threshold settings.

    Raises:
        ValueError: if an item has no ':' or a non-numeric value
    """
    pairs: Dict[str, float] = {}
    for item in value.split(','):
        if not item.strip():
            continue
        key, raw = item.split(':')
        pairs[key.strip()] = float(raw.strip())
    return pairs


@dataclass(frozen=True)
class Settings:
    allow_origins: List[str] = field(default_factory=lambda: ['*'])
    debug: bool = False
    max_upload_size_mb: int = 10
    db_path: str = ':memory:'
    risk: RiskRuleConfig = DEFAULT_RISK_CONFIG
    scheduling: SchedulingPolicyConfig = field(default_factory=SchedulingPolicyConfig)

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


def load_settings() -> Settings:
    """Build Settings from the process environment."""
    levels = parse_pairs(os.getenv('RISK_LEVEL_THRESHOLDS', 'moderate:0.4,critical:0.7'))
    windows = parse_pairs(os.getenv('SCHEDULE_WINDOW_HOURS', 'immediate:48,soon:168'))

    risk = replace(
        DEFAULT_RISK_CONFIG,
        moderate_threshold=levels.get('moderate', DEFAULT_RISK_CONFIG.moderate_threshold),
        critical_threshold=levels.get('critical', DEFAULT_RISK_CONFIG.critical_threshold),
    )
    scheduling = SchedulingPolicyConfig(
        immediate_within_hours=int(windows.get('immediate', 48)),
        soon_within_hours=int(windows.get('soon', 168)),
    )

    return Settings(
        allow_origins=os.getenv('ALLOW_ORIGINS', '*').split(','),
        debug=os.getenv('DEBUG', 'False').lower() == 'true',
        max_upload_size_mb=int(os.getenv('MAX_UPLOAD_SIZE_MB', '10')),
        db_path=os.getenv('RESQED_DB_PATH', ':memory:'),
        risk=risk,
        scheduling=scheduling,
    )
