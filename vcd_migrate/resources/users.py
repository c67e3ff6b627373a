"""User migrator for vCD migration tool."""

from vcd_migrate.context import MigrationScope
from vcd_migrate.credentials import wipe_buffer
from vcd_migrate.exceptions import UnresolvedReferenceError
from vcd_migrate.locator import ObjectLocator
from vcd_migrate.models import MediaType, ObjectKind, ObjectReference, ObjectRepresentation
from vcd_migrate.resources.base import Bindings, ObjectMigrator, find_org
from vcd_migrate.resources.roles import RoleMigrator
from vcd_migrate.xmldoc import child, insert_after, reference, replace, strip_identity

# Stands in for the password in the rewritten document; the secret itself is
# only ever written into the request buffer.
PASSWORD_SENTINEL = "__vcd_migrate_password__"


def transform_user(
    source: ObjectRepresentation, role: ObjectReference
) -> ObjectRepresentation:
    """Point the user at ``role`` and add a password field right after it."""
    body = strip_identity(source.body, "GroupReferences")
    if "Role" not in body:
        raise UnresolvedReferenceError(
            ObjectKind.ROLE.value, None, f"user '{source.name}' has no role"
        )
    body = replace(body, {"Role": reference(role.href, role.name, MediaType.ROLE)})
    body = insert_after(body, "Role", "Password", PASSWORD_SENTINEL)
    return source.with_body(body)


class UserMigrator(ObjectMigrator):
    """Migrator for organization users.

    The user's role is created from the source first when the target lacks it.
    Group memberships are not carried over.
    """

    kind = ObjectKind.ADMIN_USER
    content_type = MediaType.USER

    async def source_parent(
        self, locator: ObjectLocator, scope: MigrationScope
    ) -> ObjectReference | None:
        return await find_org(locator, scope)

    async def ensure_role(self, role_name: str, scope: MigrationScope) -> ObjectReference:
        """Target role named ``role_name``, migrated from the source if absent."""
        org = await find_org(self.locator, scope)
        role = await self.locator.find_optional(ObjectKind.ROLE, role_name, org)
        if role is not None:
            return role

        if not self.context.has_source:
            raise UnresolvedReferenceError(
                ObjectKind.ROLE.value, role_name, "no source endpoint to copy it from"
            )
        self._logger.info("Role missing on target, migrating it first", role=role_name)
        task = await RoleMigrator(self.context).migrate(role_name, scope)
        return task.target_ref

    async def bind(self, source: ObjectRepresentation, scope: MigrationScope) -> Bindings:
        role_name = child(source.body.get("Role"), "@name")
        if not role_name:
            raise UnresolvedReferenceError(
                ObjectKind.ROLE.value, None, f"user '{source.name}' has no role"
            )
        return {"role": await self.ensure_role(role_name, scope)}

    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        return transform_user(source, bindings["role"])

    async def creation_container(self, scope: MigrationScope) -> str:
        org = await find_org(self.locator, scope)
        return org.admin_href

    async def submit(self, url: str, rewritten: ObjectRepresentation) -> ObjectReference:
        """POST the user with the real password spliced into the request bytes.

        Both the secret and the request buffer are zeroed once the call
        returns, whether it succeeded or not.
        """
        secret = self.context.credentials.user_password(rewritten.name or "")
        payload = secret.splice_into(rewritten.to_xml(), PASSWORD_SENTINEL)
        try:
            document = await self.target.post(url, self.content_type, payload)
        finally:
            wipe_buffer(payload)
            secret.wipe()
        return self.created_reference(document, rewritten)
