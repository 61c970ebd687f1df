"""
BOQ Recon Tools - Reconciliation tools for construction bills of quantities.

Submodules:
- boq_recon: Drawing/BOQ extraction, comparison, and price-list mapping
"""

from tools import boq_recon

__all__ = [
    "boq_recon",
]
