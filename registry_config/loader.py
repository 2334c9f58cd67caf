"""
Configuration Loader (``registry_config.loader``).

Responsibility
--------------
Reads YAML documents and parses them into the frozen types of
``registry_config.schema``.  The packaged ``defaults.yaml`` is always the
base layer; an operator file is merged over it.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys (job cron, rate fields)  -> ``KeyError`` propagates.
* Bad values (unknown bill action or rate type, bad timestamp)  -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from registry_kernel.domain.billing import LeaseExpiryBillAction, RateType

from registry_config.schema import (
    DatabaseConfig,
    JobScheduleConfig,
    LeaseExpiryPolicy,
    RateSeed,
    RegistryConfig,
    SchedulerConfig,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
DATABASE_URL_ENV = "REGISTRY_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def merge_documents(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base`` (mappings only)."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    raise ValueError(f"Cannot parse datetime from {value!r}")


def parse_database(data: Mapping[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=str(data.get("url", DatabaseConfig.url)),
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", DatabaseConfig.pool_size)),
        max_overflow=int(data.get("max_overflow", DatabaseConfig.max_overflow)),
        pool_timeout=int(data.get("pool_timeout", DatabaseConfig.pool_timeout)),
        pool_recycle=int(data.get("pool_recycle", DatabaseConfig.pool_recycle)),
    )


def parse_job_schedule(job_name: str, data: Mapping[str, Any]) -> JobScheduleConfig:
    return JobScheduleConfig(
        job_name=job_name,
        cron=str(data["cron"]),
        enabled=bool(data.get("enabled", True)),
        timezone=data.get("timezone"),
        run_on_init=data.get("run_on_init"),
    )


def parse_scheduler(data: Mapping[str, Any]) -> SchedulerConfig:
    """
    Parse the ``scheduler`` section.

    ``jobs`` is a mapping of job name to ``{cron, enabled, timezone,
    run_on_init}``; a job mapped to null is dropped.
    """
    jobs = tuple(
        parse_job_schedule(name, spec)
        for name, spec in sorted((data.get("jobs") or {}).items())
        if spec is not None
    )
    return SchedulerConfig(
        timezone=str(data.get("timezone", SchedulerConfig.timezone)),
        run_on_init=bool(data.get("run_on_init", SchedulerConfig.run_on_init)),
        lock_timeout_seconds=float(
            data.get("lock_timeout_seconds", SchedulerConfig.lock_timeout_seconds)
        ),
        jobs=jobs,
    )


def parse_lease_expiry(data: Mapping[str, Any]) -> LeaseExpiryPolicy:
    action = data.get("bill_action", LeaseExpiryBillAction.KEEP.value)
    try:
        return LeaseExpiryPolicy(bill_action=LeaseExpiryBillAction(str(action).lower()))
    except ValueError:
        allowed = ", ".join(a.value for a in LeaseExpiryBillAction)
        raise ValueError(f"lease_expiry.bill_action must be one of {allowed}, got {action!r}") from None


def parse_rate_seed(data: Mapping[str, Any]) -> RateSeed:
    try:
        value = Decimal(str(data["value"]))
    except InvalidOperation:
        raise ValueError(f"Rate value is not a number: {data['value']!r}") from None
    return RateSeed(
        rate_type=RateType(data["rate_type"]),
        value=value,
        effective_from=parse_datetime(data["effective_from"]),
        source=data.get("source"),
    )


def parse_config(data: Mapping[str, Any]) -> RegistryConfig:
    """Build a RegistryConfig from an already merged document."""
    return RegistryConfig(
        database=parse_database(data.get("database") or {}),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        lease_expiry=parse_lease_expiry(data.get("lease_expiry") or {}),
        rates=tuple(parse_rate_seed(item) for item in data.get("rates") or ()),
    )


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> RegistryConfig:
    """
    Load the packaged defaults, merge ``path`` over them and parse.

    ``REGISTRY_DATABASE_URL`` in ``environ`` (default ``os.environ``)
    overrides ``database.url``.
    """
    document = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        document = merge_documents(document, load_yaml_file(Path(path)))

    env = os.environ if environ is None else environ
    url = env.get(DATABASE_URL_ENV)
    if url:
        document = merge_documents(document, {"database": {"url": url}})

    return parse_config(document)
