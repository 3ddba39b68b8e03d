"""Execution layer (only place that touches exchange keys).

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from loan_manager.execution.executor import LoanExecutor`
  - `from loan_manager.execution.planner import build_execution_plan`
"""

__all__: list[str] = []
