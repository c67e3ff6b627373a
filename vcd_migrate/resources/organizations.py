"""Organization migrator."""

from collections.abc import Mapping
from typing import Any

from vcd_migrate.context import MigrationScope
from vcd_migrate.models import MediaType, ObjectKind, ObjectRepresentation
from vcd_migrate.resources.base import Bindings, ObjectMigrator
from vcd_migrate.xmldoc import strip_identity, strip_links

# Children are migrated as separate tasks
CHILD_COLLECTIONS = (
    "Users",
    "Groups",
    "Catalogs",
    "Vdcs",
    "Networks",
    "RightReferences",
    "RoleReferences",
)


def transform_organization(source: ObjectRepresentation) -> ObjectRepresentation:
    """Keep the organization's own attributes and settings only."""
    body: Mapping[str, Any] = strip_identity(source.body, *CHILD_COLLECTIONS)
    if "Settings" in body:
        body = {**body, "Settings": strip_links(body["Settings"])}
    return source.with_body(body, root_tag="AdminOrg")


class OrganizationMigrator(ObjectMigrator):
    """Migrator for organizations.

    Organizations carry no references to rewrite; the rewrite only drops
    server identity and the child collections.
    """

    kind = ObjectKind.ORGANIZATION
    content_type = MediaType.ORGANIZATION

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        return {}

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_organization(source)

    async def creation_container(self, scope: MigrationScope) -> str:
        return self.target.api_url("admin")
