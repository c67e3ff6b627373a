"""Org VDC network migrator."""

from collections.abc import Mapping
from typing import Any

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import UnresolvedReferenceError
from vcd_migrate.locator import ObjectLocator
from vcd_migrate.models import MediaType, ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.polling import settle, wait_until_ready
from vcd_migrate.resources.base import (
    Bindings,
    MigrationTask,
    ObjectMigrator,
    find_vdc,
)
from vcd_migrate.xmldoc import (
    as_list,
    child,
    reference,
    replace,
    strip_identity,
    text_of,
    without,
)

NAT_ROUTED = "natRouted"
BRIDGED = "bridged"

# Server-side allocation state that cannot be submitted
ALLOCATION_KEYS = ("AllocatedIpAddresses", "SubAllocations")


def fence_mode(body: Mapping[str, Any]) -> str | None:
    return text_of(child(child(body, "Configuration"), "FenceMode"))


def strip_ip_allocations(configuration: Mapping[str, Any]) -> dict[str, Any]:
    """Drop allocation state from every IP scope of a network configuration."""
    ip_scopes = configuration.get("IpScopes")
    if not isinstance(ip_scopes, Mapping):
        return dict(configuration)
    scopes = [
        without(scope, *ALLOCATION_KEYS) if isinstance(scope, Mapping) else scope
        for scope in as_list(ip_scopes.get("IpScope"))
    ]
    return replace(configuration, {"IpScopes": replace(ip_scopes, {"IpScope": scopes})})


def transform_network(
    source: ObjectRepresentation,
    gateway: ObjectReference | None = None,
    parent_network: ObjectReference | None = None,
) -> ObjectRepresentation:
    """Rebind a routed network's gateway or a bridged network's parent network.

    Networks in any other fence mode pass through without reference changes.
    """
    body = strip_identity(source.body)
    configuration = strip_ip_allocations(body.get("Configuration") or {})
    mode = fence_mode(source.body)

    if mode == NAT_ROUTED:
        if gateway is None:
            raise UnresolvedReferenceError(ObjectKind.EDGE_GATEWAY.value, None)
        body = replace(
            body,
            {"EdgeGateway": reference(gateway.href, gateway.name, MediaType.EDGE_GATEWAY)},
        )
    elif mode == BRIDGED:
        if parent_network is None:
            raise UnresolvedReferenceError(ObjectKind.EXTERNAL_NETWORK.value, None)
        configuration = replace(
            configuration,
            {
                "ParentNetwork": reference(
                    parent_network.href, parent_network.name, MediaType.ADMIN_NETWORK
                )
            },
        )

    body = replace(body, {"Configuration": configuration})
    return source.with_body(body, root_tag="OrgVdcNetwork")


class NetworkMigrator(ObjectMigrator):
    """Migrator for org VDC networks.

    A routed network's edge gateway must already exist on the target; the
    organization walk creates it first.
    """

    kind = ObjectKind.ORG_VDC_NETWORK
    content_type = MediaType.ORG_VDC_NETWORK

    async def source_parent(
        self, locator: ObjectLocator, scope: MigrationScope
    ) -> ObjectReference | None:
        return await find_vdc(locator, scope)

    async def reference_name(self, ref: Any, kind: ObjectKind) -> str:
        """Name of a source reference, read from the source object when the reference has none."""
        name = child(ref, "@name")
        if name:
            return name

        href = child(ref, "@href")
        if not href or not self.context.has_source:
            raise UnresolvedReferenceError(
                kind.value, None, "reference carries neither a name nor a readable href"
            )
        source_client, _ = self.context.require_source()
        document = await source_client.get(href)
        name = child(next(iter(document.values())), "@name")
        if not name:
            raise UnresolvedReferenceError(kind.value, None, f"{href} has no name")
        return name

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        mode = fence_mode(source.body)
        if mode == NAT_ROUTED:
            gateway_name = await self.reference_name(
                source.body.get("EdgeGateway"), ObjectKind.EDGE_GATEWAY
            )
            vdc = await find_vdc(self.locator, scope)
            return {
                "gateway": await self.resolve_by_name(
                    ObjectKind.EDGE_GATEWAY, gateway_name, vdc
                )
            }
        if mode == BRIDGED:
            parent_name = await self.reference_name(
                child(source.body.get("Configuration"), "ParentNetwork"),
                ObjectKind.EXTERNAL_NETWORK,
            )
            return {
                "parent_network": await self.resolve_by_name(
                    ObjectKind.EXTERNAL_NETWORK, parent_name
                )
            }
        return {}

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_network(
            source, bindings.get("gateway"), bindings.get("parent_network")
        )

    async def creation_container(self, scope: MigrationScope) -> str:
        vdc = await find_vdc(self.locator, scope)
        return vdc.admin_href

    @property
    def needs_readiness(self) -> bool:
        return True

    async def await_ready(self, task: MigrationTask, scope: MigrationScope) -> None:
        """Poll the created network until its status is ready, then settle."""
        vdc = await find_vdc(self.locator, scope)
        policy = self.context.config.readiness

        async def network_ready() -> bool:
            ref = task.target_ref
            if ref is None or not ref.href:
                ref = await self.locator.find_optional(self.kind, task.name, vdc)
                if ref is None:
                    return False
                task.target_ref = ref
            document = await self.target.get(ref.admin_href)
            status = child(next(iter(document.values())), "@status")
            self._logger.debug("Org VDC network status", name=task.name, status=status)
            return status == self.locator.network_ready_status

        description = f"org VDC network '{task.name}'"
        await wait_until_ready(network_ready, policy, description)
        await settle(policy, description)
