from pydantic import BaseModel, Field, computed_field

from services.errors import InvalidModelError


class MinerProfile(BaseModel):
    """Bitcoin mining hardware specification."""

    id: str = Field(..., description="Model identifier used in calculations")
    name: str = Field(..., description="Display name")
    hashrate_th: float = Field(..., gt=0, description="Hashrate in TH/s")
    power_w: int = Field(..., gt=0, description="Power consumption in watts")

    @computed_field
    @property
    def efficiency_j_th(self) -> float:
        """Energy efficiency in J/TH (joules per terahash)."""
        return self.power_w / self.hashrate_th


MINER_LIBRARY: list[MinerProfile] = [
    MinerProfile(id="S19J_PRO", name="Antminer S19j Pro (100 TH/s)", hashrate_th=100.0, power_w=3050),
    MinerProfile(id="S9", name="Antminer S9 (13.5 TH/s)", hashrate_th=13.5, power_w=1350),
    MinerProfile(id="M20S", name="Whatsminer M20S (68 TH/s)", hashrate_th=68.0, power_w=3360),
]


def get_miner_by_id(miner_id: str) -> MinerProfile | None:
    """Retrieve a miner from the library by ID."""
    for miner in MINER_LIBRARY:
        if miner.id == miner_id:
            return miner
    return None


def require_miner(miner_id: str) -> MinerProfile:
    miner = get_miner_by_id(miner_id)
    if miner is None:
        raise InvalidModelError(f"unknown miner model: {miner_id!r}")
    return miner
