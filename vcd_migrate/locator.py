"""Object lookup through the vCD query service.

Backend API differences (role scoping, readiness status values) stay behind
the ``ObjectLocator`` boundary: one subclass per supported API version.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import ClassVar

import structlog

from vcd_migrate.client import VcdClient
from vcd_migrate.exceptions import AmbiguousError, ConfigurationError, NotFoundError
from vcd_migrate.models import ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.xmldoc import as_list

logger = structlog.get_logger(__name__)

PAGE_SIZE = 128


class ObjectLocator(ABC):
    """Find objects by kind and exact name on one endpoint."""

    QUERY_TYPES: ClassVar[dict[ObjectKind, str]] = {
        ObjectKind.ORGANIZATION: "organization",
        ObjectKind.ORG_VDC: "adminOrgVdc",
        ObjectKind.ORG_VDC_NETWORK: "orgVdcNetwork",
        ObjectKind.EDGE_GATEWAY: "edgeGateway",
        ObjectKind.EXTERNAL_NETWORK: "externalNetwork",
        ObjectKind.ADMIN_USER: "adminUser",
        ObjectKind.ROLE: "role",
        ObjectKind.PROVIDER_VDC: "providerVdc",
        ObjectKind.NETWORK_POOL: "networkPool",
        ObjectKind.VIRTUAL_CENTER: "virtualCenter",
        ObjectKind.PORT_GROUP: "portgroup",
        ObjectKind.RIGHT: "right",
    }

    # Query field holding the parent's href, for kinds scoped to a parent
    PARENT_FILTERS: ClassVar[dict[ObjectKind, str]] = {
        ObjectKind.ORG_VDC: "org",
        ObjectKind.ORG_VDC_NETWORK: "vdc",
        ObjectKind.EDGE_GATEWAY: "vdc",
        ObjectKind.ADMIN_USER: "org",
    }

    # Readiness values; the two kinds report status in different vocabularies
    gateway_ready_status: ClassVar[str] = "READY"
    network_ready_status: ClassVar[str] = "1"

    def __init__(self, client: VcdClient) -> None:
        self.client = client
        self._logger = logger.bind(endpoint=client.name, locator=self.__class__.__name__)

    async def find_all(
        self,
        kind: ObjectKind,
        name: str | None = None,
        parent: ObjectReference | None = None,
        filters: Mapping[str, str] | None = None,
    ) -> list[ObjectReference]:
        """List objects of ``kind``, optionally filtered by exact name and parent."""
        clauses = []
        if name is not None:
            clauses.append(f"name=={name}")
        if parent is not None and kind in self.PARENT_FILTERS:
            clauses.append(f"{self.PARENT_FILTERS[kind]}=={parent.href}")
        for field_name, value in (filters or {}).items():
            clauses.append(f"{field_name}=={value}")

        params = {
            "type": self.QUERY_TYPES[kind],
            "format": "records",
            "pageSize": str(PAGE_SIZE),
        }
        if clauses:
            params["filter"] = ";".join(clauses)

        references: list[ObjectReference] = []
        url: str | None = self.client.api_url("query")
        page_params: Mapping[str, str] | None = params
        while url:
            document = await self.client.get(url, params=page_params)
            body = document.get("QueryResultRecords") or {}
            for key, value in body.items():
                if key.endswith("Record"):
                    references.extend(
                        ObjectReference.from_record(kind, record)
                        for record in as_list(value)
                    )
            url = next(
                (
                    link["@href"]
                    for link in as_list(body.get("Link"))
                    if link.get("@rel") == "nextPage"
                ),
                None,
            )
            page_params = None

        # The query filter is case-insensitive and accepts wildcards
        if name is not None:
            references = [ref for ref in references if ref.name == name]

        self._logger.debug(
            "Query completed", kind=kind.value, name=name, count=len(references)
        )
        return references

    async def find(
        self, kind: ObjectKind, name: str, parent: ObjectReference | None = None
    ) -> ObjectReference:
        """Find exactly one object of ``kind`` named ``name``.

        Raises:
            NotFoundError: No match.
            AmbiguousError: More than one match.
        """
        matches = await self.find_all(kind, name=name, parent=parent)
        scope = f" in {parent.kind.value} '{parent.name}'" if parent else ""
        if not matches:
            raise NotFoundError(f"{kind.value} '{name}' not found{scope}")
        if len(matches) > 1:
            raise AmbiguousError(
                f"{len(matches)} objects of kind {kind.value} named '{name}'{scope}"
            )
        return matches[0]

    async def find_optional(
        self, kind: ObjectKind, name: str, parent: ObjectReference | None = None
    ) -> ObjectReference | None:
        """Like :meth:`find`, but absence is an answer rather than an error."""
        try:
            return await self.find(kind, name, parent)
        except NotFoundError:
            return None

    async def find_single(
        self, kind: ObjectKind, name: str | None = None
    ) -> ObjectReference:
        """Resolve a provider resource from an operator-supplied name or by uniqueness.

        Raises:
            NotFoundError: Nothing of ``kind`` exists (or nothing named ``name``).
            AmbiguousError: No name supplied and several candidates exist.
        """
        if name:
            return await self.find(kind, name)

        candidates = await self.find_all(kind)
        if not candidates:
            raise NotFoundError(f"No {kind.value} found on {self.client.name}")
        if len(candidates) > 1:
            names = ", ".join(sorted(ref.name for ref in candidates))
            raise AmbiguousError(
                f"{len(candidates)} {kind.value} objects on {self.client.name} "
                f"({names}); choose one explicitly"
            )
        return candidates[0]

    async def fetch(self, reference: ObjectReference) -> ObjectRepresentation:
        """GET the admin representation of a resolved object."""
        document = await self.client.get(reference.admin_href)
        return ObjectRepresentation(kind=reference.kind, document=document)

    @abstractmethod
    def role_container_url(self, org: ObjectReference | None) -> str:
        """Representation whose ``add`` link creates roles."""


class QueryLocatorV27(ObjectLocator):
    """vCD 8.20 (API 27.0): roles are global."""

    def role_container_url(self, org: ObjectReference | None) -> str:
        return self.client.api_url("admin")


class QueryLocatorV29(ObjectLocator):
    """vCD 9.0 (API 29.0): roles belong to an organization."""

    PARENT_FILTERS: ClassVar[dict[ObjectKind, str]] = {
        **ObjectLocator.PARENT_FILTERS,
        ObjectKind.ROLE: "org",
    }

    def role_container_url(self, org: ObjectReference | None) -> str:
        if org is None:
            raise ConfigurationError("Roles are organization-scoped on API 29.0")
        return org.admin_href


_LOCATORS: dict[str, type[ObjectLocator]] = {
    "27.0": QueryLocatorV27,
    "29.0": QueryLocatorV29,
}


def locator_for(client: VcdClient) -> ObjectLocator:
    """Pick the locator implementation for the client's API version."""
    try:
        locator_class = _LOCATORS[client.api_version]
    except KeyError as e:
        raise ConfigurationError(
            f"No locator for API version {client.api_version}"
        ) from e
    return locator_class(client)
