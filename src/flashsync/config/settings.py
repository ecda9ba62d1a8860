"""
Typed settings for the sync pipeline.

Built from a loaded Config, with well-known environment variables overriding
individual values. Validation errors are raised as ConfigurationError.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

from flashsync.config.loader import Config
from flashsync.exceptions import ConfigurationError


@dataclass
class UpstreamSettings:
    url: str = "https://api.space-invaders.com/flashinvaders_v3_pas_trop_predictible/api/gallery"
    timeout_s: float = 15.0
    attempts_per_path: int = 3
    retry_delay_s: float = 1.0
    proxies: list[str] = field(default_factory=list)
    fallback_proxies: list[str] = field(default_factory=list)
    filtered_key: str = "with_paris"
    unfiltered_key: str = "without_paris"
    fingerprint_key: str = "flash_count"


@dataclass
class StoreSettings:
    url: str = "duckdb://:memory:"
    table: str = "flashes"
    allow_list_table: str | None = None
    allow_list_column: str = "username"


@dataclass
class QueueSettings:
    url: str | None = None
    queue: str = "flashes"
    publish_timeout_s: float = 10.0


@dataclass
class PublisherSettings:
    batch_size: int = 50
    concurrency: int = 5
    batch_pause_s: float = 0.1


@dataclass
class ScheduleSettings:
    every_s: float = 300.0
    cron: str | None = None
    timezone: str | None = None
    peak_start_hour: int = 6
    peak_end_hour: int = 23
    utc_offset_hours: int = 1
    offpeak_skip_probability: float = 0.5
    backoff_cap: int = 10
    backoff_coefficient: float = 0.1
    reprocess_unchanged: bool = True


@dataclass
class LedgerSettings:
    path: str = ".flashsync/ledger.jsonl"
    warn_entries: int = 100


@dataclass
class SyncSettings:
    """Effective settings for one flashsync deployment."""

    upstream: UpstreamSettings = field(default_factory=UpstreamSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    publisher: PublisherSettings = field(default_factory=PublisherSettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    allow_list: list[str] = field(default_factory=list)
    logging: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Config, environ: Mapping[str, str] | None = None) -> SyncSettings:
        """
        Build settings from a Config, then apply environment overrides.

        Args:
            config: Loaded configuration
            environ: Environment mapping (default: os.environ)

        Raises:
            ConfigurationError: On unknown keys, bad types, or invalid values
        """
        environ = os.environ if environ is None else environ
        _apply_env_overrides(config, environ)

        settings = cls(
            upstream=_build(UpstreamSettings, config.section("upstream"), "upstream"),
            store=_build(StoreSettings, config.section("store"), "store"),
            queue=_build(QueueSettings, config.section("queue"), "queue"),
            publisher=_build(PublisherSettings, config.section("publisher"), "publisher"),
            schedule=_build(ScheduleSettings, config.section("schedule"), "schedule"),
            ledger=_build(LedgerSettings, config.section("ledger"), "ledger"),
            allow_list=_as_list(config.get("allow_list", [])),
            logging=config.section("logging"),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Validate ranges and formats; raise ConfigurationError listing every problem."""
        errors: list[str] = []

        for label, url in (("upstream.url", self.upstream.url), ("queue.url", self.queue.url)):
            if url is not None and not _looks_like_url(url):
                errors.append(f"{label} is not a valid URL: {url!r}")
        if "://" not in self.store.url:
            errors.append(f"store.url must look like 'duckdb://path' or 'postgres://...', got {self.store.url!r}")

        if self.upstream.timeout_s <= 0:
            errors.append("upstream.timeout_s must be > 0")
        if self.upstream.attempts_per_path < 1:
            errors.append("upstream.attempts_per_path must be >= 1")
        if self.queue.publish_timeout_s <= 0:
            errors.append("queue.publish_timeout_s must be > 0")
        if not 1 <= self.publisher.batch_size <= 10000:
            errors.append("publisher.batch_size must be between 1 and 10000")
        if self.publisher.concurrency < 1:
            errors.append("publisher.concurrency must be >= 1")
        if self.publisher.batch_pause_s < 0:
            errors.append("publisher.batch_pause_s must be >= 0")

        sched = self.schedule
        if sched.cron is not None and len(sched.cron.split()) != 5:
            errors.append("schedule.cron must have 5 fields")
        if sched.cron is None and sched.every_s <= 0:
            errors.append("schedule.every_s must be > 0")
        for label, hour in (("peak_start_hour", sched.peak_start_hour), ("peak_end_hour", sched.peak_end_hour)):
            if not 0 <= hour <= 23:
                errors.append(f"schedule.{label} must be between 0 and 23")
        if not -12 <= sched.utc_offset_hours <= 14:
            errors.append("schedule.utc_offset_hours must be between -12 and 14")
        if not 0.0 <= sched.offpeak_skip_probability <= 1.0:
            errors.append("schedule.offpeak_skip_probability must be between 0 and 1")
        if sched.backoff_cap < 0:
            errors.append("schedule.backoff_cap must be >= 0")
        if sched.backoff_coefficient < 0:
            errors.append("schedule.backoff_coefficient must be >= 0")

        if not self.ledger.path:
            errors.append("ledger.path must not be empty")

        if errors:
            raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(errors), details={"errors": errors})

    def redacted(self) -> dict[str, Any]:
        """Settings as a dict with URL credentials and proxy secrets masked."""
        data = asdict(self)
        data["upstream"]["url"] = redact_url(self.upstream.url)
        data["upstream"]["proxies"] = [redact_url(p) for p in self.upstream.proxies]
        data["upstream"]["fallback_proxies"] = [redact_url(p) for p in self.upstream.fallback_proxies]
        data["store"]["url"] = redact_url(self.store.url)
        if self.queue.url:
            data["queue"]["url"] = redact_url(self.queue.url)
        return data


# Environment variable -> (dot path, converter)
ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
    "DATABASE_URL": ("store.url", str),
    "RABBITMQ_URL": ("queue.url", str),
    "RABBITMQ_QUEUE": ("queue.queue", str),
    "RABBITMQ_BATCH_SIZE": ("publisher.batch_size", int),
    "RABBITMQ_CONCURRENCY": ("publisher.concurrency", int),
    "API_URL": ("upstream.url", str),
    "API_TIMEOUT": ("upstream.timeout_s", lambda v: int(v) / 1000.0),
    "PROXY_LIST": ("upstream.proxies", lambda v: _as_list(v)),
    "FALLBACK_PROXY_LIST": ("upstream.fallback_proxies", lambda v: _as_list(v)),
    "CRON_SCHEDULE": ("schedule.cron", str),
    "POLL_INTERVAL_S": ("schedule.every_s", float),
    "LEDGER_PATH": ("ledger.path", str),
    "LOG_LEVEL": ("logging.level", str),
    "ALLOW_LIST": ("allow_list", lambda v: _as_list(v)),
}


def _apply_env_overrides(config: Config, environ: Mapping[str, str]) -> None:
    for var, (path, convert) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            config.set(path, convert(raw))
        except ValueError as e:
            raise ConfigurationError(
                f"Environment variable {var} has an invalid value: {raw!r}", details={"variable": var}
            ) from e


def _build(cls: type, section: dict[str, Any], name: str) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in '{name}': {', '.join(unknown)}", details={"section": name, "keys": unknown}
        )
    values: dict[str, Any] = {}
    defaults = cls()
    for key, value in section.items():
        default = getattr(defaults, key)
        values[key] = _coerce(value, default, f"{name}.{key}")
    return cls(**values)


def _coerce(value: Any, default: Any, label: str) -> Any:
    """Coerce YAML / env string values to the type of the field default."""
    if value is None:
        return None
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in ("true", "1", "yes", "on"):
                    return True
                if lowered in ("false", "0", "no", "off"):
                    return False
                raise ValueError(value)
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, list):
            return _as_list(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{label} has an invalid value: {value!r}", details={"key": label}) from e
    return value


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


def _looks_like_url(url: str) -> bool:
    parts = urlsplit(url)
    return bool(parts.scheme) and bool(parts.netloc)


def redact_url(url: str) -> str:
    """Replace user/password in a URL with ``***``."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "***INVALID_URL***"
    if parts.username is None and parts.password is None:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***:***@{host}", parts.path, parts.query, parts.fragment))
