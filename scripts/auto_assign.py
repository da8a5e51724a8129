#!/usr/bin/env python3
"""
Assign every pending delivery to a courier, from the command line.

Usage (from the project root):
    python scripts/auto_assign.py
    python scripts/auto_assign.py --dry-run
    python scripts/auto_assign.py --limit 20

--dry-run shows the courier each delivery would get without writing.
"""
import argparse
import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pharmadispatch.core.logging import setup_logging  # noqa: E402
from pharmadispatch.db.database import AsyncSessionLocal  # noqa: E402
from pharmadispatch.domain.services.courier_service import CourierService  # noqa: E402
from pharmadispatch.domain.services.dispatch_service import DispatchService  # noqa: E402
from pharmadispatch.domain.services.settings_service import SettingsService  # noqa: E402


def print_stats(stats: dict) -> None:
    print("Courier availability")
    print(f"  available:        {stats['available']}")
    print(f"  busy:             {stats['busy']}")
    print(f"  offline:          {stats['offline']}")
    print(f"  recently active:  {stats['recently_active']}")
    print(f"  total:            {stats['total']}")
    print()


async def run(dry_run: bool = False, limit: int | None = None, session_factory=AsyncSessionLocal) -> int:
    async with session_factory() as db:
        config = await SettingsService(db).load_config()
        print_stats(await CourierService(db, config).get_availability_stats())

        service = DispatchService(db, config)
        delivery_ids = await service.pending_delivery_ids(limit=limit)
        if not delivery_ids:
            print("No pending deliveries")
            return 0

        print(f"{len(delivery_ids)} pending deliveries{' (dry run)' if dry_run else ''}")

        if dry_run:
            for delivery_id in delivery_ids:
                best = await service.preview_assignment(delivery_id)
                if best is None:
                    print(f"  #{delivery_id}: no courier available")
                else:
                    distance = f"{best.distance_km:.2f} km" if best.distance_km is not None else "distance unknown"
                    print(f"  #{delivery_id}: courier #{best.courier.id} (score {best.score}, {distance})")
            return 0

        report = await service.bulk_assign(delivery_ids)
        for item in report.details:
            courier = f" -> courier #{item['courier_id']}" if item.get("courier_id") else ""
            print(f"  #{item['delivery_id']}: {item['outcome']}{courier}")

        print()
        print(
            f"assigned {report.assigned}, no courier {report.no_courier}, "
            f"not eligible {report.not_eligible}, errors {report.errors}"
        )
        return 1 if report.errors else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Assign pending deliveries to couriers")
    parser.add_argument("--dry-run", action="store_true", help="show the choices without assigning")
    parser.add_argument("--limit", type=int, default=None, help="maximum number of deliveries")
    args = parser.parse_args()

    setup_logging(level="WARNING", json_format=False)
    sys.exit(asyncio.run(run(dry_run=args.dry_run, limit=args.limit)))


if __name__ == "__main__":
    main()
