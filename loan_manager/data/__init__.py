"""Data layer package (audit sink, currency reference data).

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from loan_manager.data.audit import MemoryAuditSink`
"""

__all__: list[str] = []
