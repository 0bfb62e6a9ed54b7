"""cdforge: staged build, publish and rollout pipeline orchestrator.

One trigger (push, tag, pull request or manual run) drives a DAG of
stages: resolve metadata, build the enclave and gateway binaries with
fingerprint caching, publish the image and chart matrices, then reset a
dev namespace and walk it through a staged blue/green rollout.  Every
transition lands in a hash-chained SQLite ledger that the Build Monitor
projects.
"""

__version__ = "0.1.0"
__description__ = "Staged build, publish and rollout pipeline orchestrator"

from cdforge.core.orchestrator import Orchestrator
from cdforge.monitor.projection import MonitorProjection as BuildMonitor
from cdforge.cli.app import app as cli

__all__ = ["Orchestrator", "BuildMonitor", "cli", "__version__"]
