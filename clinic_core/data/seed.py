# =============================================================================
# clinic_core/data/seed.py
# Bundled fallback dataset
# =============================================================================

from types import MappingProxyType
from typing import Any, Dict, List, Mapping

# Every collection the app loads and subscribes to
COLLECTIONS = (
    "revenue", "expenses", "arap", "patients", "bookings", "payslips",
    "consultations", "packages", "enrollments", "conversations", "inventory",
    "queue", "sickleaves", "leaves", "products", "productSales", "inquiries",
    "surveys", "communications", "waitlist",
)

# A load is worth keeping only if one of these holds data
CORE_COLLECTIONS = ("revenue", "patients", "expenses")

SEED_DATA: Mapping[str, tuple] = MappingProxyType({name: () for name in COLLECTIONS})


def seed_dataset() -> Dict[str, List[Dict[str, Any]]]:
    """Fresh, mutable copy of the seed."""
    return {name: [dict(r) for r in records] for name, records in SEED_DATA.items()}


def is_usable(dataset: Mapping[str, Any]) -> bool:
    """False for None, non-mappings and datasets with no core records."""
    if not isinstance(dataset, Mapping):
        return False
    return any(isinstance(dataset.get(name), list) and dataset.get(name) for name in CORE_COLLECTIONS)
