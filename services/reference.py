# services/reference.py
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional

from services import config
from services.errors import FatalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindFarm:
    bmu_id: str
    lead_party_name: Optional[str]
    fuel_type: str
    name: Optional[str] = None


class WindFarmRegistry:
    """Read-only BMU -> wind farm lookup, loaded once per run."""

    def __init__(self, farms: Iterable[WindFarm]):
        self._farms: Dict[str, WindFarm] = {f.bmu_id: f for f in farms}

    def __contains__(self, bmu_id: object) -> bool:
        return bmu_id in self._farms

    def __len__(self) -> int:
        return len(self._farms)

    def contains(self, bmu_id: str) -> bool:
        return bmu_id in self._farms

    def get(self, bmu_id: str) -> Optional[WindFarm]:
        return self._farms.get(bmu_id)

    def lead_party(self, bmu_id: str) -> Optional[str]:
        f = self._farms.get(bmu_id)
        return f.lead_party_name if f else None

    @classmethod
    def from_rows(cls, rows: Iterable[dict]) -> "WindFarmRegistry":
        farms = []
        for r in rows:
            bmu = (r.get("elexonBmUnit") or "").strip()
            fuel = (r.get("fuelType") or "").strip().upper()
            if not bmu or fuel != "WIND":
                continue
            lead = (r.get("leadPartyName") or "").strip() or None
            farms.append(WindFarm(bmu_id=bmu, lead_party_name=lead, fuel_type=fuel, name=r.get("bmUnitName")))
        return cls(farms)


def load_registry(path: Path | None = None) -> WindFarmRegistry:
    p = Path(path or config.BMU_MAPPING_FILE)
    try:
        rows = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise FatalError(f"BMU mapping not found: {p}") from e
    except (OSError, ValueError) as e:
        raise FatalError(f"BMU mapping unreadable: {p}: {e}") from e
    if not isinstance(rows, list):
        raise FatalError(f"BMU mapping must be a JSON list: {p}")

    registry = WindFarmRegistry.from_rows(r for r in rows if isinstance(r, dict))
    if not len(registry):
        raise FatalError(f"BMU mapping has no wind units: {p}")
    logger.info(f"[reference] loaded {len(registry)} wind farm BMU ids from {p.name}")
    return registry
