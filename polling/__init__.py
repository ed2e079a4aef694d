# PATH: polling/__init__.py
"""
polling/ - Load-generation driver.

Modules:
- driver: runs (sequential attempts) and campaigns (chains x repetitions)
"""

from polling.driver import (
    FanOutScheduler,
    drive_run,
    run_campaign,
    run_once,
)

__all__ = [
    "FanOutScheduler",
    "drive_run",
    "run_campaign",
    "run_once",
]
