"""Allow `python -m scripts` to load the demo organisation."""

import asyncio

from scripts.seed import _run_seed

asyncio.run(_run_seed())
