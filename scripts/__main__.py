"""``python -m scripts`` loads the demo subjects, grants and draft report."""

import asyncio

from scripts.seed import _run_seed

if __name__ == "__main__":
    asyncio.run(_run_seed())
