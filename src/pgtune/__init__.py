"""
pgtune - Resource-aware PostgreSQL tuning.

Detects host and container CPU/memory limits and turns them, together with a
declared workload profile, into a complete set of PostgreSQL parameters.
"""

__version__ = "1.0.0"
__author__ = "pgtune Team"
