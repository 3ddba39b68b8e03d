"""VALR margin-loan rebalancer.

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from loan_manager.amount import parse_amount`
  - `from loan_manager.handler import handler`
"""

__version__ = "0.3.0"

__all__: list[str] = ["__version__"]
