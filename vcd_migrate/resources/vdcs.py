"""Org VDC migrator: AdminVdc is recreated through CreateVdcParams."""

from collections.abc import Mapping
from typing import Any

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import AmbiguousError, NotFoundError, UnresolvedReferenceError
from vcd_migrate.locator import ObjectLocator
from vcd_migrate.models import MediaType, ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.resources.base import Bindings, ObjectMigrator, find_org
from vcd_migrate.xmldoc import (
    as_list,
    child,
    is_true,
    pick,
    reference,
    text_of,
    xml_bool,
)

# The "any" storage profile every provider VDC exposes
ANY_STORAGE_PROFILE = "*"

_CAPACITY_FIELDS = ("Units", "Allocated", "Limit")
_QUOTA_AND_STATE_FIELDS = ("NicQuota", "NetworkQuota", "VmQuota", "IsEnabled")
_GUARANTEE_FIELDS = ("ResourceGuaranteedMemory", "ResourceGuaranteedCpu")


def _capacity(compute: Any, resource: str) -> dict[str, Any]:
    return pick(child(compute, resource) or {}, _CAPACITY_FIELDS)


def _storage_limit(body: Mapping[str, Any]) -> str:
    limit = text_of(child(body.get("StorageCapacity"), "Limit"))
    return limit if limit is not None else "0"


def transform_vdc(
    source: ObjectRepresentation,
    provider_vdc: ObjectReference,
    storage_profile: ObjectReference,
    network_pool: ObjectReference,
) -> ObjectRepresentation:
    """Translate an AdminVdc into CreateVdcParams bound to target provider resources.

    Only one storage profile is created: the provider VDC's ``*`` profile,
    enabled and default, with the source storage limit.
    """
    body = source.body
    compute = body.get("ComputeCapacity")

    params: dict[str, Any] = {"@name": source.name}
    params.update(pick(body, ("Description", "AllocationModel")))
    params["ComputeCapacity"] = {
        "Cpu": _capacity(compute, "Cpu"),
        "Memory": _capacity(compute, "Memory"),
    }
    params.update(pick(body, _QUOTA_AND_STATE_FIELDS))
    params["VdcStorageProfile"] = {
        "Enabled": "true",
        "Units": "MB",
        "Limit": _storage_limit(body),
        "Default": "true",
        "ProviderVdcStorageProfile": reference(
            storage_profile.href,
            storage_profile.name,
            MediaType.PROVIDER_VDC_STORAGE_PROFILE,
        ),
    }
    params.update(pick(body, _GUARANTEE_FIELDS))

    vcpu = body.get("VCpuInMhz2", body.get("VCpuInMhz"))
    if vcpu is not None:
        params["VCpuInMhz"] = vcpu
    if "IsThinProvision" in body:
        params["IsThinProvision"] = body["IsThinProvision"]

    params["NetworkPoolReference"] = reference(
        network_pool.href, network_pool.name, MediaType.NETWORK_POOL
    )
    params["ProviderVdcReference"] = reference(
        provider_vdc.href, provider_vdc.name, MediaType.PROVIDER_VDC
    )
    params["UsesFastProvisioning"] = xml_bool(is_true(body.get("UsesFastProvisioning")))
    return source.with_body(params, root_tag="CreateVdcParams")


class VdcMigrator(ObjectMigrator):
    """Migrator for organization VDCs.

    The target must expose exactly one network pool. The provider VDC is the
    operator's choice or the only one present.
    """

    kind = ObjectKind.ORG_VDC
    content_type = MediaType.CREATE_VDC_PARAMS

    async def source_parent(
        self, locator: ObjectLocator, scope: MigrationScope
    ) -> ObjectReference | None:
        return await find_org(locator, scope)

    def _warn_dropped_storage_profiles(self, source: ObjectRepresentation) -> None:
        profiles = as_list(child(source.body.get("VdcStorageProfiles"), "VdcStorageProfile"))
        if len(profiles) > 1:
            self._logger.warning(
                "Only the default storage profile is migrated",
                vdc=source.name,
                dropped=[p.get("@name") for p in profiles],
            )

    async def network_pool(self) -> ObjectReference:
        """The target's only network pool.

        Raises:
            NotFoundError: The target has no network pool.
            AmbiguousError: The target has several; there is no rule to pick one.
        """
        pools = await self.locator.find_all(ObjectKind.NETWORK_POOL)
        if not pools:
            raise NotFoundError("No network pool found on target")
        if len(pools) > 1:
            raise AmbiguousError(
                f"Target has {len(pools)} network pools "
                f"({', '.join(sorted(pool.name for pool in pools))}); "
                "VDC creation needs exactly one"
            )
        return pools[0]

    async def any_storage_profile(self, provider_vdc: ObjectReference) -> ObjectReference:
        document = await self.target.get(provider_vdc.href)
        body = next(iter(document.values()))
        profiles = as_list(
            child(child(body, "StorageProfiles"), "ProviderVdcStorageProfile")
        )
        for profile in profiles:
            if profile.get("@name") == ANY_STORAGE_PROFILE:
                return ObjectReference.from_record(
                    ObjectKind.PROVIDER_VDC_STORAGE_PROFILE, profile
                )
        raise UnresolvedReferenceError(
            ObjectKind.PROVIDER_VDC_STORAGE_PROFILE.value,
            ANY_STORAGE_PROFILE,
            f"provider VDC '{provider_vdc.name}' has no such profile",
        )

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        self._warn_dropped_storage_profiles(source)
        provider_vdc = await self.locator.find_single(
            ObjectKind.PROVIDER_VDC, self.context.config.provider.provider_vdc
        )
        return {
            "provider_vdc": provider_vdc,
            "storage_profile": await self.any_storage_profile(provider_vdc),
            "network_pool": await self.network_pool(),
        }

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_vdc(
            source,
            bindings["provider_vdc"],
            bindings["storage_profile"],
            bindings["network_pool"],
        )

    async def creation_container(self, scope: MigrationScope) -> str:
        org = await find_org(self.locator, scope)
        return org.admin_href
