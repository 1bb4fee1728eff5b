"""
Engines and collaborators wiring the core into running ledger instances
"""

from .config import BaseroConfig, GatewayParams, LaneConfig, config_from_mapping, load_config
from .vault_engine import AccrualReport, VaultEngine
from .gateway_engine import GatewayEngine, in_flight
from .relay import InMemoryRelay
from .governance import Governance, Role, RoleTable
from .snapshot import load_snapshot, restore_engines, save_snapshot, snapshot_from_engines

__all__ = [
    "BaseroConfig",
    "GatewayParams",
    "LaneConfig",
    "config_from_mapping",
    "load_config",
    "AccrualReport",
    "VaultEngine",
    "GatewayEngine",
    "in_flight",
    "InMemoryRelay",
    "Governance",
    "Role",
    "RoleTable",
    "load_snapshot",
    "restore_engines",
    "save_snapshot",
    "snapshot_from_engines",
]
