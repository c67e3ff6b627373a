"""Per-kind object migrators."""

from .base import CreationState, MigrationTask, ObjectMigrator, TaskOperation
from .edge_gateways import EdgeGatewayMigrator
from .external_networks import ExternalNetworkMigrator
from .networks import NetworkMigrator
from .organizations import OrganizationMigrator
from .roles import RoleMigrator
from .users import UserMigrator
from .vdcs import VdcMigrator

__all__ = [
    "CreationState",
    "EdgeGatewayMigrator",
    "ExternalNetworkMigrator",
    "MigrationTask",
    "NetworkMigrator",
    "ObjectMigrator",
    "OrganizationMigrator",
    "RoleMigrator",
    "TaskOperation",
    "UserMigrator",
    "VdcMigrator",
]
