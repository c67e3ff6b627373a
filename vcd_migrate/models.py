"""Typed values shared by the locator, the migrators and the orchestrator."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from vcd_migrate.xmldoc import as_list, parse_document, serialize_document


class ObjectKind(str, Enum):
    """Kinds of management-plane objects the tool resolves or creates."""

    ORGANIZATION = "Organization"
    ORG_VDC = "OrgVdc"
    ORG_VDC_NETWORK = "OrgVdcNetwork"
    EDGE_GATEWAY = "EdgeGateway"
    EXTERNAL_NETWORK = "ExternalNetwork"
    ADMIN_USER = "AdminUser"
    ROLE = "Role"
    # Provider-side resources that references are rebound to
    PROVIDER_VDC = "ProviderVdc"
    PROVIDER_VDC_STORAGE_PROFILE = "ProviderVdcStorageProfile"
    NETWORK_POOL = "NetworkPool"
    VIRTUAL_CENTER = "VirtualCenter"
    PORT_GROUP = "PortGroup"
    RIGHT = "Right"


# Kinds an operator can ask to migrate
MIGRATABLE_KINDS = (
    ObjectKind.ORGANIZATION,
    ObjectKind.ORG_VDC,
    ObjectKind.EXTERNAL_NETWORK,
    ObjectKind.ADMIN_USER,
    ObjectKind.ORG_VDC_NETWORK,
    ObjectKind.EDGE_GATEWAY,
)


class MediaType:
    """vCD media types used for creation and reference elements."""

    ORGANIZATION = "application/vnd.vmware.admin.organization+xml"
    USER = "application/vnd.vmware.admin.user+xml"
    ROLE = "application/vnd.vmware.admin.role+xml"
    RIGHT = "application/vnd.vmware.admin.right+xml"
    CREATE_VDC_PARAMS = "application/vnd.vmware.admin.createVdcParams+xml"
    ADMIN_VDC = "application/vnd.vmware.admin.vdc+xml"
    EDGE_GATEWAY = "application/vnd.vmware.admin.edgeGateway+xml"
    EDGE_GATEWAY_SERVICES = (
        "application/vnd.vmware.admin.edgeGatewayServiceConfiguration+xml"
    )
    ORG_VDC_NETWORK = "application/vnd.vmware.vcloud.orgVdcNetwork+xml"
    ADMIN_NETWORK = "application/vnd.vmware.admin.network+xml"
    EXTERNAL_NETWORK = "application/vnd.vmware.admin.vmwexternalnet+xml"
    VIRTUAL_CENTER = "application/vnd.vmware.admin.vmwvirtualcenter+xml"
    PROVIDER_VDC = "application/vnd.vmware.admin.providervdc+xml"
    NETWORK_POOL = "application/vnd.vmware.admin.networkPool+xml"
    PROVIDER_VDC_STORAGE_PROFILE = (
        "application/vnd.vmware.admin.pvdcStorageProfile+xml"
    )
    TASK = "application/vnd.vmware.vcloud.task+xml"


# User-view path -> admin-view path, per kind
_ADMIN_PATHS: dict[ObjectKind, tuple[str, str]] = {
    ObjectKind.ORGANIZATION: ("/api/org/", "/api/admin/org/"),
    ObjectKind.ORG_VDC: ("/api/vdc/", "/api/admin/vdc/"),
    ObjectKind.ORG_VDC_NETWORK: ("/api/network/", "/api/admin/network/"),
    ObjectKind.EXTERNAL_NETWORK: (
        "/api/admin/network/",
        "/api/admin/extension/externalnet/",
    ),
}


@dataclass(frozen=True, slots=True)
class ObjectReference:
    """Resolved identity of one object on one endpoint."""

    kind: ObjectKind
    name: str
    id: str
    href: str
    attributes: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), compare=False
    )

    @classmethod
    def from_record(cls, kind: ObjectKind, record: Mapping[str, Any]) -> "ObjectReference":
        """Build a reference from a query record or an entity root element."""
        href = record.get("@href", "")
        attributes = {
            key[1:]: value
            for key, value in record.items()
            if key.startswith("@") and isinstance(value, str)
        }
        return cls(
            kind=kind,
            name=record.get("@name", ""),
            id=record.get("@id") or href.rstrip("/").rsplit("/", 1)[-1],
            href=href,
            attributes=MappingProxyType(attributes),
        )

    @property
    def admin_href(self) -> str:
        """URL of the admin view of this object."""
        paths = _ADMIN_PATHS.get(self.kind)
        if paths and paths[0] in self.href:
            return self.href.replace(paths[0], paths[1], 1)
        return self.href

    def as_reference(self, media_type: str | None = None) -> dict[str, str]:
        """Render as a ``{@href, @name, @type}`` reference element."""
        ref = {"@href": self.href, "@name": self.name}
        if media_type:
            ref["@type"] = media_type
        return ref


@dataclass(frozen=True, slots=True)
class LinkRelation:
    """One ``<Link rel type href>`` entry of a representation."""

    rel: str
    type: str | None
    href: str


@dataclass(frozen=True, slots=True)
class ObjectRepresentation:
    """One object's XML document, parsed.

    Instances are never modified; rewrite functions return new instances.
    """

    kind: ObjectKind
    document: Mapping[str, Any]

    @classmethod
    def from_xml(cls, kind: ObjectKind, content: bytes | str) -> "ObjectRepresentation":
        return cls(kind=kind, document=parse_document(content))

    def to_xml(self) -> str:
        return serialize_document(self.document)

    @property
    def root_tag(self) -> str:
        return next(iter(self.document))

    @property
    def body(self) -> Mapping[str, Any]:
        body = self.document[self.root_tag]
        return body if isinstance(body, Mapping) else {}

    @property
    def name(self) -> str | None:
        return self.body.get("@name")

    @property
    def href(self) -> str | None:
        return self.body.get("@href")

    @property
    def links(self) -> list[LinkRelation]:
        return links_of(self.body)

    def with_body(
        self, body: Mapping[str, Any], root_tag: str | None = None
    ) -> "ObjectRepresentation":
        """New representation of the same kind with a replaced body."""
        return ObjectRepresentation(
            kind=self.kind, document={root_tag or self.root_tag: body}
        )


def links_of(body: Mapping[str, Any]) -> list[LinkRelation]:
    """Extract the link set declared by a document body."""
    return [
        LinkRelation(rel=link.get("@rel", ""), type=link.get("@type"), href=link["@href"])
        for link in as_list(body.get("Link"))
        if isinstance(link, Mapping) and "@href" in link
    ]
