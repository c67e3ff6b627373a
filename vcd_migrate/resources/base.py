"""Abstract base class for vCD object migrators."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

import structlog

from vcd_migrate.context import MigrationContext, MigrationScope
from vcd_migrate.exceptions import UnresolvedReferenceError
from vcd_migrate.links import resolve_link
from vcd_migrate.locator import ObjectLocator
from vcd_migrate.models import ObjectKind, ObjectReference, ObjectRepresentation

logger = structlog.get_logger(__name__)

# Target-side lookups a migrator's transform needs, keyed by purpose
Bindings = dict[str, Any]


class CreationState(str, Enum):
    FETCHED = "Fetched"
    REWRITTEN = "Rewritten"
    SUBMITTED = "Submitted"
    AWAITING_READINESS = "AwaitingReadiness"
    READY = "Ready"
    SKIPPED = "Skipped"
    FAILED = "Failed"


class TaskOperation(str, Enum):
    CREATE = "create"
    CONFIGURE_SERVICES = "configure_services"


@dataclass(slots=True)
class MigrationTask:
    """Progress of one object through fetch, rewrite, submission and readiness."""

    kind: ObjectKind
    name: str
    operation: TaskOperation = TaskOperation.CREATE
    source: ObjectRepresentation | None = None
    rewritten: ObjectRepresentation | None = None
    state: CreationState = CreationState.FETCHED
    history: list[CreationState] = field(default_factory=list)
    target_ref: ObjectReference | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def advance(self, state: CreationState) -> None:
        self.state = state
        self.history.append(state)

    def fail(self, error: BaseException) -> None:
        self.error = str(error)
        self.advance(CreationState.FAILED)

    @property
    def skipped(self) -> bool:
        return self.state is CreationState.SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.state in (CreationState.READY, CreationState.SKIPPED)


async def find_org(locator: ObjectLocator, scope: MigrationScope) -> ObjectReference:
    return await locator.find(ObjectKind.ORGANIZATION, scope.require_org())


async def find_vdc(locator: ObjectLocator, scope: MigrationScope) -> ObjectReference:
    org = await find_org(locator, scope)
    return await locator.find(ObjectKind.ORG_VDC, scope.require_vdc(), org)


class ObjectMigrator(ABC):
    """Abstract base class for per-kind migrators.

    Provides common functionality for:
    - Fetching the source representation through the source locator
    - Skip-on-exists against the target
    - Rewriting (async bind, then a pure transform)
    - Creation link discovery and submission
    - Readiness waits for kinds that need them
    """

    kind: ClassVar[ObjectKind]
    content_type: ClassVar[str]
    creation_rel: ClassVar[str] = "add"

    def __init__(self, context: MigrationContext) -> None:
        """Initialize the migrator.

        Args:
            context: Configuration, sessions and task log of the current run.
        """
        self.context = context
        self.target = context.target
        self.locator = context.target_locator
        self._logger = logger.bind(migrator=self.__class__.__name__)

    @property
    def label(self) -> str:
        return self.kind.value

    async def source_parent(
        self, locator: ObjectLocator, scope: MigrationScope
    ) -> ObjectReference | None:
        """Parent object the kind is scoped to on ``locator``'s endpoint.

        Override for kinds that live inside an organization or VDC.
        """
        return None

    async def target_parent(self, scope: MigrationScope) -> ObjectReference | None:
        return await self.source_parent(self.locator, scope)

    async def fetch_source(self, name: str, scope: MigrationScope) -> ObjectRepresentation:
        """Fetch the admin representation of ``name`` from the source endpoint."""
        _, source_locator = self.context.require_source()
        parent = await self.source_parent(source_locator, scope)
        reference = await source_locator.find(self.kind, name, parent)
        return await source_locator.fetch(reference)

    async def find_existing(
        self, name: str, scope: MigrationScope
    ) -> ObjectReference | None:
        """Target object of the same kind and name in the same scope, if any."""
        parent = await self.target_parent(scope)
        return await self.locator.find_optional(self.kind, name, parent)

    @abstractmethod
    async def bind(
        self, source: ObjectRepresentation, scope: MigrationScope
    ) -> Bindings:
        """Resolve the target-side references ``transform`` needs."""
        pass

    @abstractmethod
    def transform(
        self, source: ObjectRepresentation, bindings: Bindings
    ) -> ObjectRepresentation:
        """Build the creation document. Must not perform I/O."""
        pass

    async def rewrite(
        self, source: ObjectRepresentation, scope: MigrationScope
    ) -> ObjectRepresentation:
        bindings = await self.bind(source, scope)
        return self.transform(source, bindings)

    @abstractmethod
    async def creation_container(self, scope: MigrationScope) -> str:
        """URL of the representation that carries the creation link."""
        pass

    async def creation_url(self, scope: MigrationScope) -> str:
        container = await self.creation_container(scope)
        return await resolve_link(
            self.target, container, self.creation_rel, self.content_type
        )

    async def submit(self, url: str, rewritten: ObjectRepresentation) -> ObjectReference:
        """POST the creation document and return the created object's reference."""
        document = await self.target.post(url, self.content_type, rewritten.to_xml())
        return self.created_reference(document, rewritten)

    def created_reference(
        self, document: Mapping[str, Any] | None, rewritten: ObjectRepresentation
    ) -> ObjectReference:
        if document:
            body = next(iter(document.values()))
            if isinstance(body, Mapping) and body.get("@href"):
                reference = ObjectReference.from_record(self.kind, body)
                if reference.name:
                    return reference
                return ObjectReference(
                    kind=self.kind,
                    name=rewritten.name or "",
                    id=reference.id,
                    href=reference.href,
                    attributes=reference.attributes,
                )
        return ObjectReference(
            kind=self.kind, name=rewritten.name or "", id="", href=""
        )

    @property
    def needs_readiness(self) -> bool:
        return False

    async def await_ready(self, task: MigrationTask, scope: MigrationScope) -> None:
        """Block until the created object is usable. Override where needed."""
        return None

    async def resolve_by_name(
        self,
        kind: ObjectKind,
        name: str | None,
        parent: ObjectReference | None = None,
    ) -> ObjectReference:
        """Target object referenced by name, or UnresolvedReferenceError."""
        if not name:
            raise UnresolvedReferenceError(kind.value, name, "reference carries no name")
        found = await self.locator.find_optional(kind, name, parent)
        if found is None:
            raise UnresolvedReferenceError(kind.value, name)
        return found

    async def migrate(
        self,
        name: str,
        scope: MigrationScope,
        source: ObjectRepresentation | None = None,
    ) -> MigrationTask:
        """Migrate one object, recording its task on the context.

        Args:
            name: Object name, identical on source and target.
            scope: Enclosing organization and VDC names.
            source: Pre-fetched representation (for example read from a file).

        Returns:
            The completed task, either ``Ready`` or ``Skipped``.

        Raises:
            VcdMigrationError: The task is marked ``Failed`` and the error
                propagates; objects created so far are left in place.
        """
        task = MigrationTask(kind=self.kind, name=name)
        self.context.tasks.append(task)
        self._logger.info(f"Migrating {self.label}", name=name, org=scope.org, vdc=scope.vdc)

        try:
            task.source = source or await self.fetch_source(name, scope)

            existing = await self.find_existing(name, scope)
            if existing is not None:
                task.target_ref = existing
                task.advance(CreationState.SKIPPED)
                self._logger.info(
                    f"⏭️  Skipped {self.label} (already exists)",
                    name=name,
                    dest_href=existing.href,
                )
                return task

            task.rewritten = await self.rewrite(task.source, scope)
            task.advance(CreationState.REWRITTEN)

            url = await self.creation_url(scope)
            task.target_ref = await self.submit(url, task.rewritten)
            task.advance(CreationState.SUBMITTED)

            if self.needs_readiness:
                task.advance(CreationState.AWAITING_READINESS)
                await self.await_ready(task, scope)
            task.advance(CreationState.READY)

            self._logger.info(
                f"✅ Created {self.label}",
                name=name,
                dest_href=task.target_ref.href,
            )
            return task

        except Exception as e:
            task.fail(e)
            self._logger.error(
                f"❌ Failed to migrate {self.label}",
                name=name,
                state=task.history[-2].value,
                error=str(e),
            )
            raise
