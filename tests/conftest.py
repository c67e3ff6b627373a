"""Shared pytest fixtures for the migration tool tests.

Both endpoints are ``FakeVcd`` instances behind one ``httpx.MockTransport``
that routes each request by host.
"""

import httpx
import pytest
from fake_vcd import (
    ALICE_PASSWORD,
    SOURCE_HOST,
    TARGET_HOST,
    FakeVcd,
    seed_source,
)

from vcd_migrate.config import Config, ReadinessConfig, VcdEndpointConfig
from vcd_migrate.context import open_context
from vcd_migrate.credentials import MappingCredentialProvider


@pytest.fixture
def source_vcd():
    """Source endpoint holding the acme organization."""
    vcd = FakeVcd(SOURCE_HOST)
    seed_source(vcd)
    return vcd


@pytest.fixture
def target_vcd():
    """Empty target endpoint with provider resources in place."""
    vcd = FakeVcd(TARGET_HOST)
    vcd.add_admin_root()
    vcd.add_provider_resources()
    return vcd


@pytest.fixture
def transport(source_vcd, target_vcd):
    """Mock transport routing each request to the endpoint owning its host."""
    endpoints = {source_vcd.host: source_vcd, target_vcd.host: target_vcd}

    def handler(request: httpx.Request) -> httpx.Response:
        return endpoints[request.url.host].handle(request)

    return httpx.MockTransport(handler)


@pytest.fixture
def source_endpoint():
    return VcdEndpointConfig(
        host=SOURCE_HOST, username="administrator", password="source-password"
    )


@pytest.fixture
def target_endpoint():
    return VcdEndpointConfig(
        host=TARGET_HOST, username="administrator", password="target-password"
    )


@pytest.fixture
def config(source_endpoint, target_endpoint):
    """Create a test configuration that never sleeps."""
    return Config(
        source=source_endpoint,
        target=target_endpoint,
        readiness=ReadinessConfig(poll_interval=0, max_attempts=3, settle_delay=0),
    )


@pytest.fixture
def credentials():
    """Credential provider with a password for the migrated user."""
    return MappingCredentialProvider(users={"alice": ALICE_PASSWORD})


@pytest.fixture
async def context(config, credentials, transport):
    """Migration context connected to both fake endpoints."""
    async with open_context(config, credentials, transport) as ctx:
        yield ctx


@pytest.fixture
def acme_target(target_vcd):
    """Target already holding the acme organization, its VDC and the uplink network."""
    org = target_vcd.add_org("acme")
    vdc = target_vcd.add_vdc("acme-vdc", org)
    external = target_vcd.add_external_network("ext-net-01")
    return {"org": org, "vdc": vdc, "external_network": external}
