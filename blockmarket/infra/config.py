"""Config loading utilities for the market service and API."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from blockmarket.data.directory import DEFAULT_DIRECTORY_URL
from blockmarket.execution.lifecycle import ASK_EXPIRY_CHOICES_MINUTES, LifecycleConfig
from blockmarket.pricing.oracle import DEFAULT_PRICE, DEFAULT_TRADE_WINDOW

API_KEY_ENV = "BLOCKMARKET_SUPABASE_KEY"
URL_ENV = "BLOCKMARKET_SUPABASE_URL"


@dataclass
class RemoteStoreConfig:
    url: str = ""
    api_key: str = ""
    table: str = "orders"
    timeout_seconds: float = 10.0


@dataclass
class RealtimeConfig:
    enable: bool = True
    heartbeat_interval_seconds: float = 30.0
    backoff_initial: float = 1.0
    backoff_maximum: float = 60.0


@dataclass
class PricingConfig:
    default_price: float = DEFAULT_PRICE
    trade_window: int = DEFAULT_TRADE_WINDOW
    refresh_interval_seconds: float = 15.0
    stats_window_hours: float = 24.0


@dataclass
class DirectoryConfig:
    url: str = DEFAULT_DIRECTORY_URL
    cache_seconds: float = 300.0
    validate_restaurants: bool = False


@dataclass
class PaymentConfig:
    enable: bool = False
    timeout_seconds: float = 10.0


@dataclass
class PersistenceConfig:
    audit_log_path: str = "var/audit.jsonl"
    metrics_file: str = "var/blockmarket.prom"
    emit_metrics_textfile: bool = False


@dataclass
class DashboardConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    enable: bool = True


@dataclass
class AppConfig:
    remote: RemoteStoreConfig = field(default_factory=RemoteStoreConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    payments: PaymentConfig = field(default_factory=PaymentConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    dry_run: bool = True


def load_config(path: str | Path) -> AppConfig:
    resolved = Path(path).expanduser().resolve()
    with resolved.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return config_from_dict(raw)


def config_from_dict(raw: Dict[str, Any]) -> AppConfig:
    remote = raw.get("remote", {})
    realtime = raw.get("realtime", {})
    pricing = raw.get("pricing", {})
    lifecycle = raw.get("lifecycle", {})
    directory = raw.get("directory", {})
    payments = raw.get("payments", {})
    persistence = raw.get("persistence", {})
    dashboard = raw.get("dashboard", {})

    expiry_choices: List[int] = [int(m) for m in lifecycle.get("ask_expiry_choices_minutes", ASK_EXPIRY_CHOICES_MINUTES)]

    return AppConfig(
        remote=RemoteStoreConfig(
            url=env_or_default(URL_ENV, remote.get("url", "")),
            api_key=env_or_default(API_KEY_ENV, remote.get("api_key", "")),
            table=remote.get("table", "orders"),
            timeout_seconds=float(remote.get("timeout_seconds", 10.0)),
        ),
        realtime=RealtimeConfig(
            enable=realtime.get("enable", True),
            heartbeat_interval_seconds=float(realtime.get("heartbeat_interval_seconds", 30.0)),
            backoff_initial=float(realtime.get("backoff_initial", 1.0)),
            backoff_maximum=float(realtime.get("backoff_maximum", 60.0)),
        ),
        pricing=PricingConfig(
            default_price=float(pricing.get("default_price", DEFAULT_PRICE)),
            trade_window=int(pricing.get("trade_window", DEFAULT_TRADE_WINDOW)),
            refresh_interval_seconds=float(pricing.get("refresh_interval_seconds", 15.0)),
            stats_window_hours=float(pricing.get("stats_window_hours", 24.0)),
        ),
        lifecycle=LifecycleConfig(
            timeout_seconds=float(lifecycle.get("timeout_seconds", 10.0)),
            bid_expiry_minutes=int(lifecycle.get("bid_expiry_minutes", 60)),
            ask_expiry_choices_minutes=tuple(expiry_choices),
            default_ask_expiry_minutes=int(lifecycle.get("default_ask_expiry_minutes", 60)),
            require_completion_proof=lifecycle.get("require_completion_proof", False),
        ),
        directory=DirectoryConfig(
            url=directory.get("url", DEFAULT_DIRECTORY_URL),
            cache_seconds=float(directory.get("cache_seconds", 300.0)),
            validate_restaurants=directory.get("validate_restaurants", False),
        ),
        payments=PaymentConfig(
            enable=payments.get("enable", False),
            timeout_seconds=float(payments.get("timeout_seconds", 10.0)),
        ),
        persistence=PersistenceConfig(
            audit_log_path=persistence.get("audit_log_path", "var/audit.jsonl"),
            metrics_file=persistence.get("metrics_file", "var/blockmarket.prom"),
            emit_metrics_textfile=persistence.get("emit_metrics_textfile", False),
        ),
        dashboard=DashboardConfig(
            host=dashboard.get("host", "0.0.0.0"),
            port=dashboard.get("port", 8000),
            enable=dashboard.get("enable", True),
        ),
        dry_run=raw.get("dry_run", True),
    )


def env_or_default(key: str, default: str) -> str:
    return os.getenv(key) or default


__all__ = [
    "load_config",
    "config_from_dict",
    "AppConfig",
    "RemoteStoreConfig",
    "RealtimeConfig",
    "PricingConfig",
    "DirectoryConfig",
    "PaymentConfig",
    "PersistenceConfig",
    "DashboardConfig",
]
