"""Role migrator for vCD migration tool."""

from collections.abc import Mapping

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import UnresolvedReferenceError
from vcd_migrate.locator import ObjectLocator
from vcd_migrate.models import MediaType, ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.resources.base import Bindings, ObjectMigrator, find_org
from vcd_migrate.xmldoc import as_list, child, reference, strip_identity


def transform_role(
    source: ObjectRepresentation, rights: Mapping[str, ObjectReference]
) -> ObjectRepresentation:
    """Rebind every right reference, by right name, to the target's rights.

    Raises:
        UnresolvedReferenceError: A right does not exist on the target.
    """
    body = strip_identity(source.body)
    source_rights = as_list(child(body.get("RightReferences"), "RightReference"))

    rebound = []
    for right in source_rights:
        name = right.get("@name")
        target = rights.get(name)
        if target is None:
            raise UnresolvedReferenceError(ObjectKind.RIGHT.value, name)
        rebound.append(reference(target.href, target.name, MediaType.RIGHT))

    if rebound:
        body["RightReferences"] = {"RightReference": rebound}
    return source.with_body(body, root_tag="Role")


class RoleMigrator(ObjectMigrator):
    """Migrator for roles.

    Roles are organization-scoped on API 29.0 and global on 27.0; the
    locator hides the difference.
    """

    kind = ObjectKind.ROLE
    content_type = MediaType.ROLE

    async def source_parent(
        self, locator: ObjectLocator, scope: MigrationScope
    ) -> ObjectReference | None:
        return await find_org(locator, scope)

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        rights = await self.locator.find_all(ObjectKind.RIGHT)
        self._logger.debug("Loaded target rights", count=len(rights))
        return {"rights": {right.name: right for right in rights}}

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_role(source, bindings["rights"])

    async def creation_container(self, scope: MigrationScope) -> str:
        org = await find_org(self.locator, scope)
        return self.locator.role_container_url(org)
