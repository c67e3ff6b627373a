"""Edge gateway migrator and gateway service re-apply.

A gateway is created before the org VDC networks that attach to it, so its
creation document can only reference external networks: internal interfaces,
the DHCP service and every rule bound to an internal interface are left out.
Once the networks exist the full service configuration is posted again.
"""

from collections.abc import Callable, Mapping
from typing import Any

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import UnresolvedReferenceError
from vcd_migrate.links import resolve_link
from vcd_migrate.locator import ObjectLocator
from vcd_migrate.models import MediaType, ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.polling import settle, wait_for_task, wait_until_ready
from vcd_migrate.resources.base import (
    Bindings,
    CreationState,
    MigrationTask,
    ObjectMigrator,
    TaskOperation,
    find_vdc,
)
from vcd_migrate.xmldoc import (
    as_list,
    child,
    is_true,
    reference,
    replace,
    strip_identity,
    text_of,
    without,
)

CONFIGURE_SERVICES_REL = "edgeGateway:configureServices"
SERVICES_TAG = "EdgeGatewayServiceConfiguration"

# service block -> (repeated entry, path from the entry to its network reference)
SERVICE_REFERENCES: dict[str, tuple[str, tuple[str, ...]]] = {
    "NatService": ("NatRule", ("GatewayNatRule", "Interface")),
    "StaticRoutingService": ("StaticRoute", ("GatewayInterface",)),
    "GatewayIpsecVpnService": ("Endpoint", ("Network",)),
    "LoadBalancerService": ("VirtualServer", ("Interface",)),
    "GatewayDhcpService": ("Pool", ("Network",)),
}

# Returns the rebound reference, or None to leave the entry out
ReferenceBinder = Callable[[Mapping[str, Any]], dict[str, str] | None]


def _get_path(node: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        node = child(node, key)
    return node


def _set_path(node: Mapping[str, Any], path: tuple[str, ...], value: Any) -> dict[str, Any]:
    head, *rest = path
    if rest:
        value = _set_path(node[head], tuple(rest), value)
    return replace(node, {head: value})


def is_internal(interface: Mapping[str, Any]) -> bool:
    return (text_of(interface.get("InterfaceType")) or "").lower() == "internal"


def gateway_interfaces(body: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    interfaces = child(child(body, "Configuration"), "GatewayInterfaces")
    return as_list(child(interfaces, "GatewayInterface"))


def is_disabled(block: Any) -> bool:
    return isinstance(block, Mapping) and "IsEnabled" in block and not is_true(block["IsEnabled"])


def enabled_services(services: Mapping[str, Any]) -> dict[str, Any]:
    """Drop every feature block whose ``IsEnabled`` is false."""
    return {tag: block for tag, block in services.items() if not is_disabled(block)}


def service_reference_names(services: Mapping[str, Any]) -> set[str]:
    """Names of every network referenced by a rule of the given blocks."""
    names = set()
    for tag, (entry_tag, path) in SERVICE_REFERENCES.items():
        for entry in as_list(child(services.get(tag), entry_tag)):
            name = child(_get_path(entry, path), "@name")
            if name:
                names.add(name)
    return names


def _rebind_block(
    block: Mapping[str, Any],
    entry_tag: str,
    path: tuple[str, ...],
    binder: ReferenceBinder,
) -> dict[str, Any]:
    entries = []
    for entry in as_list(block.get(entry_tag)):
        ref = _get_path(entry, path)
        if not isinstance(ref, Mapping):
            entries.append(entry)
            continue
        rebound = binder(ref)
        if rebound is not None:
            entries.append(_set_path(entry, path, rebound))

    if not entries:
        return without(block, entry_tag)
    return replace(block, {entry_tag: entries})


def rebind_services(
    services: Mapping[str, Any], binder: ReferenceBinder
) -> dict[str, Any]:
    rebound = {}
    for tag, block in services.items():
        if tag in SERVICE_REFERENCES and isinstance(block, Mapping):
            entry_tag, path = SERVICE_REFERENCES[tag]
            block = _rebind_block(block, entry_tag, path, binder)
        rebound[tag] = block
    return rebound


def _binder(
    networks: Mapping[str, ObjectReference],
    kind: ObjectKind,
    dropped: frozenset[str] = frozenset(),
) -> ReferenceBinder:
    def bind(ref: Mapping[str, Any]) -> dict[str, str] | None:
        name = ref.get("@name")
        if name in dropped:
            return None
        target = networks.get(name)
        if target is None:
            raise UnresolvedReferenceError(kind.value, name)
        return reference(target.href, target.name, ref.get("@type"))

    return bind


def transform_edge_gateway(
    source: ObjectRepresentation, external_networks: Mapping[str, ObjectReference]
) -> ObjectRepresentation:
    """Build the gateway creation document.

    Args:
        source: Source EdgeGateway representation.
        external_networks: Target external networks by name.

    Raises:
        UnresolvedReferenceError: An uplink or rule references an external
            network the target does not have.
    """
    body = strip_identity(source.body)
    configuration: dict[str, Any] = dict(body.get("Configuration") or {})
    interfaces = gateway_interfaces(source.body)

    internal_networks = frozenset(
        child(interface.get("Network"), "@name")
        for interface in interfaces
        if is_internal(interface)
    )
    bind = _binder(external_networks, ObjectKind.EXTERNAL_NETWORK, internal_networks)

    uplinks = []
    for interface in interfaces:
        if is_internal(interface):
            continue
        updates: dict[str, Any] = {"UseForDefaultRoute": "false"}
        if isinstance(interface.get("Network"), Mapping):
            updates["Network"] = bind(interface["Network"])
        uplinks.append(replace(interface, updates))

    updates = {"GatewayInterfaces": {"GatewayInterface": uplinks}}
    if "UseDefaultRouteForDnsRelay" in configuration:
        updates["UseDefaultRouteForDnsRelay"] = "false"

    services = configuration.get(SERVICES_TAG)
    if isinstance(services, Mapping):
        creatable = without(enabled_services(services), "GatewayDhcpService")
        updates[SERVICES_TAG] = rebind_services(creatable, bind)

    body["Configuration"] = replace(configuration, updates)
    return source.with_body(body, root_tag="EdgeGateway")


def source_services(source: ObjectRepresentation) -> Mapping[str, Any] | None:
    """The service configuration carried by an EdgeGateway representation."""
    return child(child(source.body, "Configuration"), SERVICES_TAG)


def transform_service_configuration(
    services: Mapping[str, Any], networks: Mapping[str, ObjectReference]
) -> ObjectRepresentation:
    """Build the full service configuration, DHCP included.

    Args:
        services: Source EdgeGatewayServiceConfiguration body.
        networks: Target external and org VDC networks by name.

    Raises:
        UnresolvedReferenceError: A rule references a network missing on the target.
    """
    bind = _binder(networks, ObjectKind.ORG_VDC_NETWORK)
    rebound = rebind_services(enabled_services(strip_identity(services)), bind)
    return ObjectRepresentation(
        kind=ObjectKind.EDGE_GATEWAY, document={SERVICES_TAG: rebound}
    )


class EdgeGatewayMigrator(ObjectMigrator):
    """Migrator for edge gateways (one per VDC)."""

    kind = ObjectKind.EDGE_GATEWAY
    content_type = MediaType.EDGE_GATEWAY

    async def source_parent(
        self, locator: ObjectLocator, scope: MigrationScope
    ) -> ObjectReference | None:
        return await find_vdc(locator, scope)

    async def external_networks(self, names: set[str]) -> dict[str, ObjectReference]:
        """Target external networks among ``names``; missing ones are left out."""
        found = {}
        for name in sorted(names):
            network = await self.locator.find_optional(ObjectKind.EXTERNAL_NETWORK, name)
            if network is not None:
                found[name] = network
        return found

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        names = {
            child(interface.get("Network"), "@name")
            for interface in gateway_interfaces(source.body)
            if not is_internal(interface)
        }
        services = source_services(source)
        if services:
            names |= service_reference_names(enabled_services(services))
        names.discard(None)
        return {"external_networks": await self.external_networks(names)}

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_edge_gateway(source, bindings["external_networks"])

    async def creation_container(self, scope: MigrationScope) -> str:
        vdc = await find_vdc(self.locator, scope)
        return vdc.admin_href

    @property
    def needs_readiness(self) -> bool:
        return True

    async def await_ready(self, task: MigrationTask, scope: MigrationScope) -> None:
        """Poll the gateway query record until it reports the ready status, then settle."""
        vdc = await find_vdc(self.locator, scope)
        policy = self.context.config.readiness

        async def gateway_ready() -> bool:
            record = await self.locator.find_optional(self.kind, task.name, vdc)
            if record is None:
                return False
            status = record.attributes.get("gatewayStatus")
            self._logger.debug("Edge gateway status", name=task.name, status=status)
            if status == self.locator.gateway_ready_status:
                task.target_ref = record
                return True
            return False

        description = f"edge gateway '{task.name}'"
        await wait_until_ready(gateway_ready, policy, description)
        await settle(policy, description)

    async def service_networks(
        self, services: Mapping[str, Any], vdc: ObjectReference
    ) -> dict[str, ObjectReference]:
        """Resolve rule references to target external networks, then org VDC networks."""
        names = service_reference_names(enabled_services(services))
        networks = await self.external_networks(names)
        for name in sorted(names - networks.keys()):
            network = await self.locator.find_optional(
                ObjectKind.ORG_VDC_NETWORK, name, vdc
            )
            if network is not None:
                networks[name] = network
        return networks

    async def configure_services(
        self,
        name: str,
        scope: MigrationScope,
        source: ObjectRepresentation | None = None,
    ) -> MigrationTask:
        """Re-apply the source gateway's full service configuration on the target.

        Runs whether or not the gateway was created in this run, and waits for
        the returned task to succeed.
        """
        task = MigrationTask(
            kind=self.kind, name=name, operation=TaskOperation.CONFIGURE_SERVICES
        )
        self.context.tasks.append(task)
        self._logger.info("Configuring edge gateway services", name=name, vdc=scope.vdc)

        try:
            task.source = source or await self.fetch_source(name, scope)
            vdc = await find_vdc(self.locator, scope)
            gateway = await self.resolve_by_name(self.kind, name, vdc)
            task.target_ref = gateway

            services = source_services(task.source)
            if not services:
                task.advance(CreationState.SKIPPED)
                self._logger.info(
                    "⏭️  Skipped edge gateway services (none configured)", name=name
                )
                return task

            networks = await self.service_networks(services, vdc)
            task.rewritten = transform_service_configuration(services, networks)
            task.advance(CreationState.REWRITTEN)

            url = await resolve_link(
                self.target,
                gateway.admin_href,
                CONFIGURE_SERVICES_REL,
                MediaType.EDGE_GATEWAY_SERVICES,
            )
            response = await self.target.post(
                url, MediaType.EDGE_GATEWAY_SERVICES, task.rewritten.to_xml()
            )
            task.advance(CreationState.SUBMITTED)

            task.advance(CreationState.AWAITING_READINESS)
            await wait_for_task(
                self.target,
                response,
                self.context.config.readiness,
                f"service configuration of edge gateway '{name}'",
            )
            task.advance(CreationState.READY)

            self._logger.info("✅ Configured edge gateway services", name=name)
            return task

        except Exception as e:
            task.fail(e)
            self._logger.error(
                "❌ Failed to configure edge gateway services",
                name=name,
                state=task.history[-2].value,
                error=str(e),
            )
            raise
