import json
import os
import logging
from typing import Dict, Any, List, Optional

from app.core.config import settings

logger = logging.getLogger("app")

SEED_SECTIONS = (
    "businesses",
    "resources",
    "weekly_schedules",
    "blackouts",
    "recurring_blocks",
    "slot_settings",
    "bookings",
    "slot_holds",
    "pricing_rules",
)

def load_seed_data(path: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Loads the JSON fixture the in-memory store is populated from.
    Raises FileNotFoundError if the file is missing, ValueError if it is not valid JSON.
    Returns: Dict with every section in SEED_SECTIONS (missing ones as empty lists).
    """
    path = path or settings.SEED_DATA_PATH

    if not os.path.exists(path):
        logger.critical(f"❌ Seed file '{path}' not found! The memory store cannot start.")
        raise FileNotFoundError(f"Seed data file not found at {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        logger.critical(f"❌ Failed to parse seed JSON: {e}")
        raise ValueError(f"Invalid JSON in seed file: {e}")

    if not isinstance(raw, dict):
        logger.critical(f"❌ Seed file '{path}' must contain a JSON object")
        raise ValueError("Seed data must be a JSON object")

    unknown = set(raw) - set(SEED_SECTIONS)
    if unknown:
        logger.warning(f"⚠️ Ignoring unknown seed sections: {sorted(unknown)}")

    data = {section: raw.get(section) or [] for section in SEED_SECTIONS}
    logger.info(
        f"✅ Seed loaded: {len(data['resources'])} resources, "
        f"{len(data['pricing_rules'])} pricing rules"
    )
    return data

def get_section(data: Dict[str, Any], name: str) -> List[Dict[str, Any]]:
    """
    Helper to get one seed section (resources, bookings...).
    Returns: list of raw rows, empty when absent.
    """
    return data.get(name) or []
