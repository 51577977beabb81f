# =============================================================================
# clinic_core/data/__init__.py
# Dataset ownership, reconciliation and role scoping
# =============================================================================
"""
The Supabase collaborators live in `clinic_core.data.supabase_client` and
are imported from there directly.
"""

from .reconciler import ChangeEvent, ChangeKind, apply_change
from .scoping import ScopedDataset, is_visible, scope
from .dataset_store import DatasetStore
from .seed import COLLECTIONS, is_usable, seed_dataset

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "apply_change",
    "ScopedDataset",
    "is_visible",
    "scope",
    "DatasetStore",
    "COLLECTIONS",
    "is_usable",
    "seed_dataset",
]
