"""Per-run migration context: configuration, sessions, locators and task log."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import structlog

from vcd_migrate.client import SessionGateway, VcdClient
from vcd_migrate.config import Config
from vcd_migrate.credentials import CredentialProvider
from vcd_migrate.exceptions import ConfigurationError
from vcd_migrate.locator import ObjectLocator, locator_for

if TYPE_CHECKING:
    from vcd_migrate.resources.base import MigrationTask

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class MigrationScope:
    """Names of the enclosing organization and VDC an object lives in.

    The same names are used on the source and on the target.
    """

    org: str | None = None
    vdc: str | None = None

    def require_org(self) -> str:
        if not self.org:
            raise ConfigurationError("An organization name (--org) is required")
        return self.org

    def require_vdc(self) -> str:
        if not self.vdc:
            raise ConfigurationError("A VDC name (--vdc) is required")
        return self.vdc


@dataclass
class MigrationContext:
    """Everything one migration run needs, passed explicitly to every migrator."""

    config: Config
    target: VcdClient
    target_locator: ObjectLocator
    credentials: CredentialProvider
    source: VcdClient | None = None
    source_locator: ObjectLocator | None = None
    tasks: list["MigrationTask"] = field(default_factory=list)

    @property
    def has_source(self) -> bool:
        return self.source is not None

    def require_source(self) -> tuple[VcdClient, ObjectLocator]:
        """Source client and locator, for operations that read the live source."""
        if self.source is None or self.source_locator is None:
            raise ConfigurationError(
                "No source endpoint configured; set VCD_SOURCE_* or use --from-file"
            )
        return self.source, self.source_locator


@asynccontextmanager
async def open_context(
    config: Config,
    credentials: CredentialProvider,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[MigrationContext]:
    """Connect to the configured endpoints and close every session on exit."""
    gateway = SessionGateway(credentials, transport)
    try:
        target = await gateway.connect(config.target, "target")
        source = None
        if config.source is not None:
            source = await gateway.connect(config.source, "source")

        logger.info(
            "Migration context ready",
            target=config.target.host,
            source=config.source.host if config.source else None,
        )
        yield MigrationContext(
            config=config,
            target=target,
            target_locator=locator_for(target),
            credentials=credentials,
            source=source,
            source_locator=locator_for(source) if source is not None else None,
        )
    finally:
        await gateway.close_all()
