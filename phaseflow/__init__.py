"""
phaseflow: epic phase lifecycle and hierarchical progress tracking.

The core (workflow/ and hierarchy/) is pure: it takes snapshots and
returns results. service.py, store.py and cli.py are a file-backed caller
around it.
"""

__version__ = "0.1.0"
