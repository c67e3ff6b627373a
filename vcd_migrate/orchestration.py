"""Migration orchestrator for coordinating vCD object migrations."""

from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar
from xml.parsers.expat import ExpatError

import structlog

from vcd_migrate.context import MigrationContext, MigrationScope
from vcd_migrate.exceptions import ConfigurationError, UnsupportedTopologyError
from vcd_migrate.models import ObjectKind, ObjectRepresentation
from vcd_migrate.polling import settle
from vcd_migrate.resources import (
    CreationState,
    EdgeGatewayMigrator,
    ExternalNetworkMigrator,
    MigrationTask,
    NetworkMigrator,
    ObjectMigrator,
    OrganizationMigrator,
    UserMigrator,
    VdcMigrator,
)
from vcd_migrate.resources.base import find_vdc
from vcd_migrate.resources.networks import NAT_ROUTED, fence_mode
from vcd_migrate.xmldoc import as_list, child

logger = structlog.get_logger(__name__)


class MigrationOrchestrator:
    """Orchestrates vCD object migrations in creation order.

    Handles:
    - Single-object migrations from the live source or a captured file
    - The full organization walk (org, users, VDCs, gateways, networks)
    - Re-applying gateway services once dependent networks exist
    - Task summary reporting

    Objects are processed strictly one at a time. The first error aborts the
    run; objects created before it stay on the target and a rerun skips them.
    """

    MIGRATORS: ClassVar[dict[ObjectKind, type[ObjectMigrator]]] = {
        ObjectKind.ORGANIZATION: OrganizationMigrator,
        ObjectKind.ORG_VDC: VdcMigrator,
        ObjectKind.EXTERNAL_NETWORK: ExternalNetworkMigrator,
        ObjectKind.ADMIN_USER: UserMigrator,
        ObjectKind.ORG_VDC_NETWORK: NetworkMigrator,
        ObjectKind.EDGE_GATEWAY: EdgeGatewayMigrator,
    }

    def __init__(self, context: MigrationContext) -> None:
        """Initialize the orchestrator.

        Args:
            context: Connected endpoints, configuration and task log.
        """
        self.context = context
        self._logger = logger.bind(orchestrator="MigrationOrchestrator")

    def migrator(self, kind: ObjectKind) -> ObjectMigrator:
        try:
            migrator_class = self.MIGRATORS[kind]
        except KeyError as e:
            raise ConfigurationError(f"{kind.value} objects cannot be migrated") from e
        return migrator_class(self.context)

    async def migrate_object(
        self,
        kind: ObjectKind,
        name: str,
        scope: MigrationScope,
        services_only: bool = False,
        source: ObjectRepresentation | None = None,
    ) -> MigrationTask:
        """Migrate one object without cascading to its children.

        Args:
            kind: Object kind.
            name: Object name.
            scope: Enclosing organization and VDC names.
            services_only: Only re-apply an edge gateway's service configuration.
            source: Representation to use instead of reading the live source.
        """
        if services_only:
            if kind is not ObjectKind.EDGE_GATEWAY:
                raise ConfigurationError("--services-only is only valid for EdgeGateway")
            return await self.configure_gateway_services(name, scope, source)
        return await self.migrator(kind).migrate(name, scope, source)

    async def migrate_from_file(
        self,
        kind: ObjectKind,
        path: Path,
        scope: MigrationScope,
        services_only: bool = False,
    ) -> MigrationTask:
        """Migrate the object captured in an XML file."""
        if not path.exists():
            raise ConfigurationError(f"Source file not found: {path}")
        try:
            source = ObjectRepresentation.from_xml(kind, path.read_bytes())
        except ExpatError as e:
            raise ConfigurationError(f"{path} is not a valid XML document: {e}") from e
        if not source.name:
            raise ConfigurationError(f"{path} holds no named {kind.value} document")

        self._logger.info(
            "Loaded source representation from file",
            path=str(path),
            kind=kind.value,
            name=source.name,
        )
        return await self.migrate_object(kind, source.name, scope, services_only, source)

    async def configure_gateway_services(
        self,
        name: str,
        scope: MigrationScope,
        source: ObjectRepresentation | None = None,
    ) -> MigrationTask:
        return await EdgeGatewayMigrator(self.context).configure_services(
            name, scope, source
        )

    async def migrate_organization(self, name: str) -> dict[str, Any]:
        """Migrate an organization and everything it contains, in creation order.

        1. The organization.
        2. Each user, after its role.
        3. Each VDC (a VDC with several edge gateways is refused).
        4. Each org VDC network, after its edge gateway for routed networks.
        5. The full service configuration of every gateway met in step 4.

        Returns:
            Summary of the run's tasks.
        """
        start_time = datetime.now()
        self.context.require_source()
        org_scope = MigrationScope(org=name)
        self._logger.info("Starting organization migration", org=name)

        org_task = await self.migrator(ObjectKind.ORGANIZATION).migrate(name, org_scope)
        org_body = org_task.source.body

        await self._migrate_users(org_body, org_scope)

        vdc_scopes = [
            MigrationScope(org=name, vdc=vdc_ref["@name"])
            for vdc_ref in as_list(child(org_body.get("Vdcs"), "Vdc"))
        ]
        for vdc_scope in vdc_scopes:
            await self._check_topology(vdc_scope)
            await self.migrator(ObjectKind.ORG_VDC).migrate(vdc_scope.vdc, vdc_scope)

        gateways: list[tuple[MigrationScope, str]] = []
        for vdc_scope in vdc_scopes:
            gateways.extend(await self._migrate_networks(vdc_scope))

        if gateways:
            await settle(self.context.config.readiness, "organization networks")
            for vdc_scope, gateway_name in gateways:
                await self.configure_gateway_services(gateway_name, vdc_scope)

        self._logger.info("Organization migration completed", org=name)
        return self.summarize(start_time)

    async def _migrate_users(self, org_body: dict[str, Any], scope: MigrationScope) -> None:
        users = UserMigrator(self.context)
        for user_ref in as_list(child(org_body.get("Users"), "UserReference")):
            user_name = user_ref["@name"]
            source = await users.fetch_source(user_name, scope)
            role_name = child(source.body.get("Role"), "@name")
            if role_name:
                await users.ensure_role(role_name, scope)
            await users.migrate(user_name, scope, source=source)

    async def _check_topology(self, scope: MigrationScope) -> None:
        _, source_locator = self.context.require_source()
        vdc = await find_vdc(source_locator, scope)
        gateways = await source_locator.find_all(ObjectKind.EDGE_GATEWAY, parent=vdc)
        if len(gateways) > 1:
            raise UnsupportedTopologyError(
                f"VDC '{scope.vdc}' has {len(gateways)} edge gateways; "
                "only one gateway per VDC is supported"
            )

    async def _migrate_networks(
        self, scope: MigrationScope
    ) -> list[tuple[MigrationScope, str]]:
        """Create a VDC's networks, each routed one after its gateway.

        Returns:
            The gateways the VDC's routed networks attach to.
        """
        _, source_locator = self.context.require_source()
        networks = NetworkMigrator(self.context)
        gateway_migrator = EdgeGatewayMigrator(self.context)
        gateways: list[tuple[MigrationScope, str]] = []

        vdc = await find_vdc(source_locator, scope)
        for network_ref in await source_locator.find_all(
            ObjectKind.ORG_VDC_NETWORK, parent=vdc
        ):
            source = await source_locator.fetch(network_ref)
            if fence_mode(source.body) == NAT_ROUTED:
                gateway_name = await networks.reference_name(
                    source.body.get("EdgeGateway"), ObjectKind.EDGE_GATEWAY
                )
                if (scope, gateway_name) not in gateways:
                    await gateway_migrator.migrate(gateway_name, scope)
                    gateways.append((scope, gateway_name))
            await networks.migrate(network_ref.name, scope, source=source)

        return gateways

    def summarize(self, start_time: datetime | None = None) -> dict[str, Any]:
        """Summarize the tasks recorded so far."""
        tasks = self.context.tasks
        end_time = datetime.now()

        def count(state: CreationState) -> int:
            return sum(1 for task in tasks if task.state is state)

        results: dict[str, Any] = {
            "success": all(task.succeeded for task in tasks),
            "summary": {
                "total_tasks": len(tasks),
                "created": count(CreationState.READY),
                "skipped": count(CreationState.SKIPPED),
                "failed": count(CreationState.FAILED),
                "errors": [
                    {"kind": task.kind.value, "name": task.name, "error": task.error}
                    for task in tasks
                    if task.state is CreationState.FAILED
                ],
            },
            "tasks": [
                {
                    "kind": task.kind.value,
                    "name": task.name,
                    "operation": task.operation.value,
                    "state": task.state.value,
                    "history": [state.value for state in task.history],
                    "target_href": task.target_ref.href if task.target_ref else None,
                }
                for task in tasks
            ],
        }
        if start_time is not None:
            results["start_time"] = start_time.isoformat()
            results["end_time"] = end_time.isoformat()
            results["duration_seconds"] = (end_time - start_time).total_seconds()
        return results
