"""External network migrator for vCD migration tool."""

from collections.abc import Mapping
from typing import Any

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import AmbiguousError, UnresolvedReferenceError
from vcd_migrate.models import MediaType, ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.resources.base import Bindings, ObjectMigrator
from vcd_migrate.resources.networks import strip_ip_allocations
from vcd_migrate.xmldoc import as_list, child, reference, replace, strip_identity, text_of

PORTGROUP_REF = "vmext:VimPortGroupRef"
PORTGROUP_REFS = "vmext:VimPortGroupRefs"
VIM_OBJECT_REF = "vmext:VimObjectRef"


def backing_refs(body: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Every vSphere object reference backing an external network."""
    refs = as_list(body.get(PORTGROUP_REF))
    refs.extend(as_list(child(body.get(PORTGROUP_REFS), VIM_OBJECT_REF)))
    return [ref for ref in refs if isinstance(ref, Mapping)]


def transform_external_network(
    source: ObjectRepresentation,
    vcenter: ObjectReference,
    portgroup: ObjectReference,
) -> ObjectRepresentation:
    """Point the network at the target vCenter and portgroup.

    IP allocation state is dropped from every IP scope.
    """
    body = strip_identity(source.body)
    if not backing_refs(body):
        raise UnresolvedReferenceError(
            ObjectKind.PORT_GROUP.value, None, "external network has no portgroup backing"
        )

    def retarget(ref: Mapping[str, Any]) -> dict[str, Any]:
        return replace(
            ref,
            {
                "vmext:VimServerRef": reference(
                    vcenter.href, vcenter.name, MediaType.VIRTUAL_CENTER
                ),
                "vmext:MoRef": portgroup.attributes["moref"],
                "vmext:VimObjectType": portgroup.attributes.get(
                    "portgroupType", "DV_PORTGROUP"
                ),
            },
        )

    updates: dict[str, Any] = {}
    if isinstance(body.get("Configuration"), Mapping):
        updates["Configuration"] = strip_ip_allocations(body["Configuration"])
    if isinstance(body.get(PORTGROUP_REF), Mapping):
        updates[PORTGROUP_REF] = retarget(body[PORTGROUP_REF])
    if isinstance(body.get(PORTGROUP_REFS), Mapping):
        refs = [retarget(ref) for ref in as_list(body[PORTGROUP_REFS].get(VIM_OBJECT_REF))]
        updates[PORTGROUP_REFS] = replace(body[PORTGROUP_REFS], {VIM_OBJECT_REF: refs})

    return source.with_body(replace(body, updates))


class ExternalNetworkMigrator(ObjectMigrator):
    """Migrator for provider external networks.

    The vCenter is the operator's choice or the only one registered on the
    target. The portgroup is the operator's choice or the one named like the
    source network's backing portgroup.
    """

    kind = ObjectKind.EXTERNAL_NETWORK
    content_type = MediaType.EXTERNAL_NETWORK

    async def source_portgroup_name(self, backing: Mapping[str, Any]) -> str:
        """Name of the source portgroup backing the network, found by MoRef."""
        moref = text_of(backing.get("vmext:MoRef"))
        if not self.context.has_source:
            raise UnresolvedReferenceError(
                ObjectKind.PORT_GROUP.value,
                moref,
                "no source endpoint to look up its name; set provider.portgroup",
            )
        _, source_locator = self.context.require_source()
        source_vc = child(backing.get("vmext:VimServerRef"), "@href")
        matches = [
            portgroup
            for portgroup in await source_locator.find_all(
                ObjectKind.PORT_GROUP, filters={"moref": moref}
            )
            if source_vc is None or portgroup.attributes.get("vc") == source_vc
        ]
        if len(matches) != 1:
            raise UnresolvedReferenceError(
                ObjectKind.PORT_GROUP.value,
                moref,
                f"{len(matches)} source portgroups match; set provider.portgroup",
            )
        return matches[0].name

    async def target_portgroup(self, name: str, vcenter: ObjectReference) -> ObjectReference:
        candidates = [
            portgroup
            for portgroup in await self.locator.find_all(ObjectKind.PORT_GROUP, name=name)
            if portgroup.attributes.get("vc") == vcenter.href
        ]
        if not candidates:
            raise UnresolvedReferenceError(
                ObjectKind.PORT_GROUP.value, name, f"not found on vCenter '{vcenter.name}'"
            )
        if len(candidates) > 1:
            raise AmbiguousError(
                f"{len(candidates)} portgroups named '{name}' on vCenter '{vcenter.name}'"
            )
        return candidates[0]

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        provider = self.context.config.provider
        vcenter = await self.locator.find_single(ObjectKind.VIRTUAL_CENTER, provider.vcenter)

        backings = backing_refs(source.body)
        if not backings:
            raise UnresolvedReferenceError(
                ObjectKind.PORT_GROUP.value, None, "external network has no portgroup backing"
            )
        portgroup_name = provider.portgroup or await self.source_portgroup_name(backings[0])
        return {
            "vcenter": vcenter,
            "portgroup": await self.target_portgroup(portgroup_name, vcenter),
        }

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_external_network(
            source, bindings["vcenter"], bindings["portgroup"]
        )

    async def creation_container(self, scope: MigrationScope) -> str:
        return self.target.api_url("admin/extension")
