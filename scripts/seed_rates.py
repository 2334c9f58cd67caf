#!/usr/bin/env python3
"""
Insert the rate rows listed under ``rates:`` in the configuration.

Usage:
    python scripts/seed_rates.py --config registry.yaml [--create-tables]

A seed whose (rate_type, effective_from) already exists is skipped, so the
script can be re-run after adding rows to the file.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from registry_batch.domain.types import SYSTEM_ACTOR_ID
from registry_config import load_config
from registry_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from registry_kernel.exceptions import DuplicateRateError
from registry_kernel.services.audit_service import AuditService
from registry_kernel.services.rate_config_service import RateConfigService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed rate configurations")
    parser.add_argument("--config", type=Path, help="YAML file merged over the packaged defaults")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if not config.rates:
        print("No rates configured; nothing to do.")
        return 0

    init_engine_from_url(config.database.url, echo=config.database.echo)
    if args.create_tables:
        create_tables()

    created = skipped = 0
    with session_scope() as session:
        rates = RateConfigService(session)
        audit = AuditService(session)
        for seed in sorted(config.rates, key=lambda s: (s.rate_type.value, s.effective_from)):
            try:
                with session.begin_nested():
                    rates.create_rate(
                        seed.rate_type,
                        seed.value,
                        seed.effective_from,
                        actor_id=SYSTEM_ACTOR_ID,
                        source=seed.source,
                        audit=audit,
                    )
            except DuplicateRateError:
                skipped += 1
                print(f"  skip   {seed.rate_type.value} from {seed.effective_from.isoformat()}")
                continue
            created += 1
            print(f"  create {seed.rate_type.value} = {seed.value} from {seed.effective_from.isoformat()}")

    print(f"Done: {created} created, {skipped} skipped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
