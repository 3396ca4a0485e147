"""YAML config loading and validation."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from scheduled_matching.models.enums import Country


@dataclass
class SchedulerConfig:
    autostart: bool = True
    misfire_grace_time: int = 3600  # seconds
    manual_dispatch_interval_seconds: int = 60


@dataclass
class MatchingConfig:
    duplicate_window_days: int = 30  # same pair may not be matched again within this window
    daily_match_limit: int = 1
    frequency_window_days: int = 7
    candidate_pool_limit: int = 20
    user_timeout_seconds: float = 30.0


@dataclass
class CountryDefaults:
    cron_expression: str = "0 0 * * 4,0"
    timezone: str = "Asia/Seoul"
    is_enabled: bool = True
    batch_size: int = 5
    delay_between_users_ms: int = 120
    max_retry_count: int = 1
    login_window_days: int = 7
    include_unknown_rank: bool = False
    description: str = ""


def _default_countries() -> dict[str, CountryDefaults]:
    return {
        Country.KR.value: CountryDefaults(timezone="Asia/Seoul"),
        Country.JP.value: CountryDefaults(timezone="Asia/Tokyo"),
    }


@dataclass
class AppConfig:
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    countries: dict[str, CountryDefaults] = field(default_factory=_default_countries)
    database_url: str = ""
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 3


def _country_defaults(code: str, raw: dict) -> CountryDefaults:
    base = _default_countries().get(code, CountryDefaults())
    return CountryDefaults(
        cron_expression=raw.get("cron_expression", base.cron_expression),
        timezone=raw.get("timezone", base.timezone),
        is_enabled=raw.get("is_enabled", base.is_enabled),
        batch_size=raw.get("batch_size", base.batch_size),
        delay_between_users_ms=raw.get("delay_between_users_ms", base.delay_between_users_ms),
        max_retry_count=raw.get("max_retry_count", base.max_retry_count),
        login_window_days=raw.get("login_window_days", base.login_window_days),
        include_unknown_rank=raw.get("include_unknown_rank", base.include_unknown_rank),
        description=raw.get("description", base.description),
    )


def load_config(config_path: str = "config.yaml") -> AppConfig:
    """Load and validate configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Copy config.example.yaml to config.yaml and adjust it."
        )

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    config = AppConfig()

    # Scheduler
    scheduler_raw = raw.get("scheduler", {})
    config.scheduler = SchedulerConfig(
        autostart=scheduler_raw.get("autostart", True),
        misfire_grace_time=scheduler_raw.get("misfire_grace_time", 3600),
        manual_dispatch_interval_seconds=scheduler_raw.get("manual_dispatch_interval_seconds", 60),
    )

    # Matching
    matching_raw = raw.get("matching", {})
    config.matching = MatchingConfig(
        duplicate_window_days=matching_raw.get("duplicate_window_days", 30),
        daily_match_limit=matching_raw.get("daily_match_limit", 1),
        frequency_window_days=matching_raw.get("frequency_window_days", 7),
        candidate_pool_limit=matching_raw.get("candidate_pool_limit", 20),
        user_timeout_seconds=matching_raw.get("user_timeout_seconds", 30.0),
    )

    # Country seeds
    countries_raw = raw.get("countries")
    if countries_raw:
        config.countries = {
            str(code).upper(): _country_defaults(str(code).upper(), values or {})
            for code, values in countries_raw.items()
        }

    # Env vars take precedence
    config.database_url = os.environ.get("DATABASE_URL", raw.get("database_url", ""))
    config.log_dir = raw.get("log_dir", "logs")
    config.log_level = os.environ.get("SCHEDULED_MATCHING_LOG_LEVEL", raw.get("log_level", "INFO"))
    config.log_max_bytes = int(raw.get("log_max_bytes", config.log_max_bytes))
    config.log_backup_count = int(raw.get("log_backup_count", config.log_backup_count))

    return config


def validate_config(config: AppConfig) -> list[str]:
    """Return list of validation warnings (empty = OK)."""
    from scheduled_matching.registry import INT_RANGES
    from scheduled_matching.utils.cron import build_trigger

    warnings = []
    known = {c.value for c in Country}

    for code, defaults in config.countries.items():
        if code not in known:
            warnings.append(f"Unknown country '{code}' in country defaults - it will be ignored")
            continue
        try:
            build_trigger(defaults.cron_expression, defaults.timezone)
        except ValueError as e:
            warnings.append(f"Country {code}: invalid default schedule ({e})")
        for name, (low, high) in INT_RANGES.items():
            value = getattr(defaults, name)
            if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
                warnings.append(
                    f"Country {code}: {name}={value!r} outside {low}..{high}, the default config will not be seeded"
                )

    if config.matching.duplicate_window_days <= 0:
        warnings.append("duplicate_window_days is not positive - the duplicate-match guard is disabled")

    if config.matching.daily_match_limit <= 0:
        warnings.append("daily_match_limit is not positive - every manual matching will be blocked")

    if config.matching.user_timeout_seconds <= 0:
        warnings.append("user_timeout_seconds is not positive - per-user timeouts are disabled")

    if config.scheduler.manual_dispatch_interval_seconds < 10:
        warnings.append("manual_dispatch_interval_seconds below 10s will poll the database aggressively")

    return warnings
