#!/usr/bin/env python3
"""Advance every active warming schedule by one day (run daily from cron)."""

import asyncio
import json
import sys

from wacrm.api.dependencies import get_storage
from wacrm.services.warming import advance_warming_day


async def main() -> int:
    storage = get_storage()
    print(f"Advancing warming schedules using {type(storage).__name__}")

    report = await advance_warming_day(storage)
    print(json.dumps(report.to_dict(), indent=2))

    if report.failed:
        print(f"{len(report.failed)} schedule(s) failed", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
