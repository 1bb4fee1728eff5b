"""
Deployment configuration.

Every section is a frozen dataclass validated on construction. A YAML file
maps one-to-one onto them:

    ledger:
      max_rebase_bps: 1000
    vault:
      min_deposit: 10000000000000000
      accrual_period: 3600
      curve: {kink_bps: 8000, rate_at_zero_bps: 200, rate_at_kink_bps: 800, rate_at_max_bps: 3000}
      tiers: [[10000000000000000000, 100]]
      performance_fee: {target_rate_bps: 500, fee_share_bps: 2000, recipient: treasury}
    gateway:
      chain_id: 1
      allowlisted_sources: [2]
      lanes:
        - {chain_id: 2, max_amount: 1000000000000000000000, capacity: 5000000000000000000000, refill_per_second: 1000000000000000000}

Unknown keys are rejected so that a typo never silently falls back to a
default.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Type, TypeVar

import yaml

from ..core.errors import BaseroError, InvalidConfig
from ..core.fees import PerformanceFeeParams
from ..core.ledger import LedgerParams
from ..core.math import WAD
from ..core.rate_model import LockSchedule, RateCurve, TierTable
from ..core.vault import VaultParams

T = TypeVar("T")


@dataclass(frozen=True)
class LaneConfig:
    """Outbound lane to one remote chain."""

    chain_id: int
    enabled: bool = True
    min_amount: int = 1
    max_amount: int = 1_000_000 * WAD
    capacity: int = 100_000 * WAD
    refill_per_second: int = WAD

    def __post_init__(self) -> None:
        for name in ("chain_id", "min_amount", "max_amount", "capacity", "refill_per_second"):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise InvalidConfig(f"lane {name} must be a non-negative int: {v!r}")
        if not isinstance(self.enabled, bool):
            raise InvalidConfig("lane enabled must be a bool")
        if not (0 < self.min_amount <= self.max_amount):
            raise InvalidConfig(f"lane bounds must satisfy 0 < min <= max: {self.min_amount}, {self.max_amount}")


@dataclass(frozen=True)
class GatewayParams:
    chain_id: int
    lanes: Tuple[LaneConfig, ...] = ()
    allowlisted_sources: FrozenSet[int] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.chain_id, int) or isinstance(self.chain_id, bool) or self.chain_id < 0:
            raise InvalidConfig(f"chain_id must be a non-negative int: {self.chain_id!r}")
        object.__setattr__(self, "lanes", tuple(self.lanes))
        object.__setattr__(self, "allowlisted_sources", frozenset(int(c) for c in self.allowlisted_sources))
        seen = set()
        for lane in self.lanes:
            if lane.chain_id == self.chain_id:
                raise InvalidConfig(f"lane to own chain {self.chain_id}")
            if lane.chain_id in seen:
                raise InvalidConfig(f"duplicate lane for chain {lane.chain_id}")
            seen.add(lane.chain_id)

    def lane(self, chain_id: int) -> Optional[LaneConfig]:
        for lane in self.lanes:
            if lane.chain_id == chain_id:
                return lane
        return None


@dataclass(frozen=True)
class BaseroConfig:
    ledger: LedgerParams = field(default_factory=LedgerParams)
    vault: VaultParams = field(default_factory=VaultParams)
    gateway: Optional[GatewayParams] = None


def _build(cls: Type[T], obj: Any, section: str, **converted: Any) -> T:
    if not isinstance(obj, Mapping):
        raise InvalidConfig(f"{section} must be a mapping")
    allowed = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(obj) - allowed)
    if unknown:
        raise InvalidConfig(f"unknown keys in {section}: {unknown}", section=section, keys=unknown)
    kwargs: Dict[str, Any] = dict(obj)
    kwargs.update(converted)
    try:
        return cls(**kwargs)
    except BaseroError:
        raise
    except (TypeError, ValueError) as exc:
        raise InvalidConfig(f"invalid {section}: {exc}", section=section) from exc


def _steps(obj: Any, section: str) -> Tuple[Tuple[int, int], ...]:
    if not isinstance(obj, (list, tuple)):
        raise InvalidConfig(f"{section} must be a list of [threshold, bonus_bps] pairs")
    return tuple(tuple(entry) for entry in obj)  # type: ignore[misc]


def vault_params_from_mapping(obj: Mapping[str, Any]) -> VaultParams:
    if not isinstance(obj, Mapping):
        raise InvalidConfig("vault must be a mapping")
    converted: Dict[str, Any] = {}
    if "curve" in obj:
        converted["curve"] = _build(RateCurve, obj["curve"], "vault.curve")
    if "tiers" in obj:
        converted["tiers"] = _build(TierTable, {"tiers": _steps(obj["tiers"], "vault.tiers")}, "vault.tiers")
    if "lock_schedule" in obj:
        schedule = dict(obj["lock_schedule"]) if isinstance(obj["lock_schedule"], Mapping) else obj["lock_schedule"]
        if isinstance(schedule, dict) and "steps" in schedule:
            schedule["steps"] = _steps(schedule["steps"], "vault.lock_schedule.steps")
        converted["lock_schedule"] = _build(LockSchedule, schedule, "vault.lock_schedule")
    if "performance_fee" in obj:
        converted["performance_fee"] = _build(PerformanceFeeParams, obj["performance_fee"], "vault.performance_fee")
    return _build(VaultParams, obj, "vault", **converted)


def gateway_params_from_mapping(obj: Mapping[str, Any]) -> GatewayParams:
    if not isinstance(obj, Mapping):
        raise InvalidConfig("gateway must be a mapping")
    lanes = obj.get("lanes") or []
    if not isinstance(lanes, list):
        raise InvalidConfig("gateway.lanes must be a list")
    converted = {
        "lanes": tuple(_build(LaneConfig, lane, f"gateway.lanes[{i}]") for i, lane in enumerate(lanes)),
        "allowlisted_sources": frozenset(obj.get("allowlisted_sources") or ()),
    }
    return _build(GatewayParams, obj, "gateway", **converted)


def vault_params_to_mapping(params: VaultParams) -> Dict[str, Any]:
    """Inverse of `vault_params_from_mapping` (lists instead of tuples)."""
    return {
        "min_deposit": params.min_deposit,
        "max_deposits": params.max_deposits,
        "accrual_period": params.accrual_period,
        "daily_accrual_cap": params.daily_accrual_cap,
        "curve": asdict(params.curve),
        "tiers": [[t, b] for t, b in params.tiers.tiers],
        "lock_schedule": {
            "steps": [[d, b] for d, b in params.lock_schedule.steps],
            "min_duration": params.lock_schedule.min_duration,
            "max_duration": params.lock_schedule.max_duration,
        },
        "performance_fee": asdict(params.performance_fee),
    }


def gateway_params_to_mapping(params: GatewayParams) -> Dict[str, Any]:
    return {
        "chain_id": params.chain_id,
        "allowlisted_sources": sorted(params.allowlisted_sources),
        "lanes": [asdict(lane) for lane in sorted(params.lanes, key=lambda l: l.chain_id)],
    }


def config_from_mapping(obj: Any) -> BaseroConfig:
    """Build a validated `BaseroConfig` from plain dicts/lists (parsed YAML or JSON)."""
    if obj is None:
        return BaseroConfig()
    if not isinstance(obj, Mapping):
        raise InvalidConfig("config root must be a mapping")
    unknown = sorted(set(obj) - {"ledger", "vault", "gateway"})
    if unknown:
        raise InvalidConfig(f"unknown top-level keys: {unknown}", keys=unknown)
    ledger = _build(LedgerParams, obj.get("ledger") or {}, "ledger")
    vault = vault_params_from_mapping(obj["vault"]) if "vault" in obj else VaultParams()
    gateway = gateway_params_from_mapping(obj["gateway"]) if obj.get("gateway") is not None else None
    return BaseroConfig(ledger=ledger, vault=vault, gateway=gateway)


def load_config(path: str | Path) -> BaseroConfig:
    """Read a YAML config file."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidConfig(f"{path}: not valid YAML: {exc}", path=str(path)) from exc
    return config_from_mapping(data)
