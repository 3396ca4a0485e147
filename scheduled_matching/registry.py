"""Schedule registry: durable per-country configuration for batch matching."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from scheduled_matching.config import CountryDefaults
from scheduled_matching.errors import NotFoundError, ValidationError
from scheduled_matching.models import Country, ScheduledMatchingConfig
from scheduled_matching.utils.cron import build_trigger

logger = logging.getLogger("scheduled_matching.registry")

# field -> (min, max), inclusive
INT_RANGES = {
    "batch_size": (1, 50),
    "delay_between_users_ms": (0, 10000),
    "max_retry_count": (0, 5),
    "login_window_days": (1, 365),
}
BOOL_FIELDS = {"is_enabled", "include_unknown_rank"}
STR_FIELDS = {"cron_expression", "timezone", "description"}
MUTABLE_FIELDS = set(INT_RANGES) | BOOL_FIELDS | STR_FIELDS


def normalize_country(value) -> str:
    raw = value.value if isinstance(value, Country) else str(value or "").strip().upper()
    try:
        return Country(raw).value
    except ValueError:
        allowed = ", ".join(c.value for c in Country)
        raise ValidationError(f"Unknown country '{value}' (expected one of: {allowed})")


def validate_fields(fields: dict) -> dict:
    """Type- and range-check a set of config fields. Returns a cleaned copy."""
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown config field(s): {', '.join(sorted(unknown))}")

    cleaned = {}
    for name, value in fields.items():
        if name in INT_RANGES:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer")
            low, high = INT_RANGES[name]
            if not low <= value <= high:
                raise ValidationError(f"{name} must be between {low} and {high}, got {value}")
        elif name in BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"{name} must be a boolean")
        elif name == "description":
            if value is not None and not isinstance(value, str):
                raise ValidationError("description must be a string")
        else:
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} must be a non-empty string")
            value = " ".join(value.split()) if name == "cron_expression" else value.strip()
        cleaned[name] = value
    return cleaned


def _check_schedule(cron_expression: str, timezone: str) -> None:
    try:
        build_trigger(cron_expression, timezone)
    except ValueError as e:
        raise ValidationError(f"Invalid schedule '{cron_expression}' ({timezone}): {e}")


def _defaults_as_fields(defaults: CountryDefaults) -> dict:
    return {
        "cron_expression": defaults.cron_expression,
        "timezone": defaults.timezone,
        "is_enabled": defaults.is_enabled,
        "batch_size": defaults.batch_size,
        "delay_between_users_ms": defaults.delay_between_users_ms,
        "max_retry_count": defaults.max_retry_count,
        "login_window_days": defaults.login_window_days,
        "include_unknown_rank": defaults.include_unknown_rank,
        "description": defaults.description or None,
    }


class ScheduleRegistry:
    """CRUD over ScheduledMatchingConfig. Persists only; never triggers execution."""

    def __init__(self, session_factory: sessionmaker, defaults: dict[str, CountryDefaults] | None = None):
        self._session_factory = session_factory
        self._defaults = defaults or {}

    def find(self, country) -> ScheduledMatchingConfig | None:
        code = normalize_country(country)
        db = self._session_factory()
        try:
            return db.query(ScheduledMatchingConfig).filter(ScheduledMatchingConfig.country == code).first()
        finally:
            db.close()

    def get(self, country) -> ScheduledMatchingConfig:
        config = self.find(country)
        if config is None:
            raise NotFoundError("config", normalize_country(country))
        return config

    def create(self, country, fields: dict, actor: str | None = None) -> ScheduledMatchingConfig:
        code = normalize_country(country)
        if self.find(code) is not None:
            raise ValidationError(f"A config for {code} already exists; update it instead")
        return self.upsert(code, fields, actor=actor, create=True)

    def upsert(
        self, country, patch: dict, actor: str | None = None, create: bool = False
    ) -> ScheduledMatchingConfig:
        """Apply a partial update. Creates the row only when ``create`` is true."""
        code = normalize_country(country)
        changes = validate_fields(patch)

        db = self._session_factory()
        try:
            config = db.query(ScheduledMatchingConfig).filter(ScheduledMatchingConfig.country == code).first()
            if config is None:
                if not create:
                    raise NotFoundError("config", code)
                seed = self._defaults.get(code, CountryDefaults())
                # Seed values come from YAML and get the same checks as API input
                values = validate_fields({**_defaults_as_fields(seed), **changes})
                _check_schedule(values["cron_expression"], values["timezone"])
                config = ScheduledMatchingConfig(country=code, last_modified_by=actor, **values)
                db.add(config)
                action = "Created"
            else:
                _check_schedule(
                    changes.get("cron_expression", config.cron_expression),
                    changes.get("timezone", config.timezone),
                )
                for name, value in changes.items():
                    setattr(config, name, value)
                config.last_modified_by = actor
                action = "Updated"

            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ValidationError(f"A config for {code} already exists; update it instead")
            db.refresh(config)
            logger.info(
                "[country:%s] %s config by %s: %s",
                code, action, actor or "unknown", ", ".join(sorted(changes)) or "defaults",
            )
            return config
        finally:
            db.close()

    def seed_defaults(self, actor: str = "system") -> list[ScheduledMatchingConfig]:
        """Create configs for countries that have none. Existing rows are left alone."""
        created = []
        for code in self._defaults:
            try:
                code = normalize_country(code)
            except ValidationError:
                logger.warning("Skipping default config for unknown country %s", code)
                continue
            if self.find(code) is not None:
                continue
            try:
                created.append(self.upsert(code, {}, actor=actor, create=True))
            except ValidationError as e:
                logger.error("[country:%s] Default config not seeded: %s", code, e.message)
        return created

    # Defined last: the method name shadows the builtin inside the class body
    def list(self) -> list[ScheduledMatchingConfig]:
        db = self._session_factory()
        try:
            return db.query(ScheduledMatchingConfig).order_by(ScheduledMatchingConfig.country).all()
        finally:
            db.close()
