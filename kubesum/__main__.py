"""Entry point for `python -m kubesum`.

Usage:
    python -m kubesum
"""

from __future__ import annotations

import asyncio

from kubesum.app import main

asyncio.run(main())
