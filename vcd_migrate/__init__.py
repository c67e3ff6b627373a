"""vCD Migration Tool.

A Python CLI & library for copying vCloud Director objects from one
management plane to another in creation order.
"""

__version__ = "0.1.0"

from vcd_migrate.config import Config
from vcd_migrate.orchestration import MigrationOrchestrator

__all__ = [
    "Config",
    "MigrationOrchestrator",
    "__version__",
]
