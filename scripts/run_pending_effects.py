"""Sweep completion effects left PENDING by crashed or skipped runs.

Usage:
    python -m scripts.run_pending_effects           # up to 100 intents
    python -m scripts.run_pending_effects 500
"""

import asyncio
import sys

from src.config.settings import get_settings
from src.effects.tasks import build_runner


async def _run(limit: int) -> None:
    runner = build_runner(get_settings())
    executed = await runner.run_pending(limit=limit)
    print(f"Executed {executed} pending effect(s).")


if __name__ == "__main__":
    asyncio.run(_run(int(sys.argv[1]) if len(sys.argv) > 1 else 100))
