"""
Catalog reconciliation: pure diffing of parsed feeds against stored state.
"""

from .reconciler import changed_fields, reconcile

__all__ = ["changed_fields", "reconcile"]
