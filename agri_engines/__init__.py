"""
Module: agri_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for the
    kernel services and the outer command/report layer.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import agri_kernel.logging_config (and sibling engine modules).
    MUST NOT import agri_services.

Invariants enforced:
    - Purity: engines never read the clock.  Cutoffs and posting dates are
      passed in as explicit parameters.
    - Integer arithmetic: every monetary amount is in minor units.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from agri_engines.ageing import AgeingClassifier
    from agri_engines.allocation import AllocationEngine
"""

from agri_engines.ageing import (
    AGEING_BUCKETS,
    BUCKET_NAMES,
    AgeBucket,
    AgedItem,
    AgeingClassifier,
    AgeingReport,
    AgeingRow,
    OpenItem,
)
from agri_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationMethod,
    AllocationResult,
    OpenTarget,
    ShareAllocation,
    ShareAllocationResult,
    ShareTarget,
    is_complete_split,
    percentage_total,
    primary_index,
)
from agri_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AGEING_BUCKETS",
    "BUCKET_NAMES",
    "AgeBucket",
    "AgedItem",
    "AgeingClassifier",
    "AgeingReport",
    "AgeingRow",
    "OpenItem",
    "AllocationEngine",
    "AllocationLine",
    "AllocationMethod",
    "AllocationResult",
    "OpenTarget",
    "ShareAllocation",
    "ShareAllocationResult",
    "ShareTarget",
    "is_complete_split",
    "percentage_total",
    "primary_index",
    "compute_input_fingerprint",
    "traced_engine",
]
