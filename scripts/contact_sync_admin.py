#!/usr/bin/env python3
"""Operator CLI for the contact sync core.

Usage:
    python scripts/contact_sync_admin.py sweep --tenant acme
    python scripts/contact_sync_admin.py seed-rules --tenant acme
    python scripts/contact_sync_admin.py purge
    python scripts/contact_sync_admin.py events --tenant acme --limit 20

Connects using DATABASE_URL and the SIDE_A_* / SIDE_B_* settings from the
environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.contact_sync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(command: str, tenant: str | None, limit: int) -> int:
    """Run one admin command inside the service lifespan."""
    from src.contact_sync.main import lifespan
    from src.contact_sync.sync.scheduler import build_maintenance_tasks

    async with lifespan(start_scheduler=False) as service:
        if command == "sweep":
            print(f"Running full sync for tenant={tenant}")
            result = await service.orchestrator.run_full_sync(tenant)
            print(f"  Total:   {result.total}")
            print(f"  Synced:  {result.synced}")
            print(f"  Skipped: {result.skipped}")
            print(f"  Errors:  {result.errors}")
            print(f"  Took:    {result.duration_ms} ms")
            return 1 if result.errors else 0

        if command == "seed-rules":
            inserted = await service.field_mapping.seed_defaults(tenant)
            print(f"Seeded {inserted} default rule(s) for tenant={tenant}")
            return 0

        if command == "purge":
            tasks = build_maintenance_tasks(service.dedupe, service.audit)
            for name, task in tasks.items():
                removed = await task()
                print(f"  {name}: {removed} removed")
            return 0

        if command == "events":
            events = await service.audit.list_recent(tenant, limit=limit)
            for event in events:
                print(
                    f"{event.created_at.isoformat()}  {event.source.value:<15} "
                    f"{event.action.value:<7} {event.status.value:<8} "
                    f"a={event.side_a_contact_id or '-'} b={event.side_b_contact_id or '-'}"
                    + (f"  error={event.error}" if event.error else "")
                )
            return 0

    return 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Contact sync operator commands")
    parser.add_argument("command", choices=["sweep", "seed-rules", "purge", "events"])
    parser.add_argument("--tenant", default=None, help="Tenant id (required except for purge)")
    parser.add_argument("--limit", type=int, default=50, help="Number of events to show")
    args = parser.parse_args()

    if args.command != "purge" and not args.tenant:
        parser.error(f"--tenant is required for {args.command}")

    sys.exit(asyncio.run(run(args.command, args.tenant, args.limit)))


if __name__ == "__main__":
    main()
