"""Unit tests for the edge gateway and org VDC network migrators."""

import pytest

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import ReadinessTimeoutError, UnresolvedReferenceError
from vcd_migrate.models import MediaType
from vcd_migrate.resources import (
    CreationState,
    EdgeGatewayMigrator,
    NetworkMigrator,
    TaskOperation,
)
from vcd_migrate.xmldoc import as_list

# Test constants
GATEWAY_NAME = "acme-egw"
NETWORK_NAME = "acme-routed"
VDC_SCOPE = MigrationScope(org="acme", vdc="acme-vdc")
READINESS_ATTEMPTS = 3


def gateway_queries(vcd):
    return [query for query in vcd.queries if query["type"] == "edgeGateway"]


@pytest.mark.asyncio
class TestEdgeGatewayCreation:
    """Test gateway creation and its readiness wait."""

    async def test_gateway_created_and_ready(self, context, target_vcd, acme_target):
        """Test that the gateway is created with its uplink only and awaited."""
        task = await EdgeGatewayMigrator(context).migrate(GATEWAY_NAME, VDC_SCOPE)

        assert task.state is CreationState.READY
        assert CreationState.AWAITING_READINESS in task.history
        assert target_vcd.posted_types == [MediaType.EDGE_GATEWAY]

        gateway = target_vcd.posted(MediaType.EDGE_GATEWAY)[0]["EdgeGateway"]
        interface = as_list(gateway["Configuration"]["GatewayInterfaces"]["GatewayInterface"])
        assert len(interface) == 1
        assert interface[0]["Network"]["@href"] == acme_target["external_network"]
        assert task.target_ref.attributes["gatewayStatus"] == "READY"

    async def test_gateway_never_ready(self, context, target_vcd, acme_target):
        """Test that a gateway stuck in another status times out."""
        target_vcd.gateway_status = "BUSY"

        with pytest.raises(ReadinessTimeoutError, match="acme-egw"):
            await EdgeGatewayMigrator(context).migrate(GATEWAY_NAME, VDC_SCOPE)

        task = context.tasks[-1]
        assert task.state is CreationState.FAILED
        assert task.history[-2] is CreationState.AWAITING_READINESS
        # One existence check plus the bounded status polls
        assert len(gateway_queries(target_vcd)) == 1 + READINESS_ATTEMPTS

    async def test_gateway_without_uplink_network(self, context, target_vcd):
        """Test that a missing external network stops the gateway before creation."""
        org = target_vcd.add_org("acme")
        target_vcd.add_vdc("acme-vdc", org)

        with pytest.raises(UnresolvedReferenceError, match="ext-net-01"):
            await EdgeGatewayMigrator(context).migrate(GATEWAY_NAME, VDC_SCOPE)

        assert target_vcd.posts == []

    async def test_existing_gateway_is_skipped(self, context, target_vcd, acme_target):
        """Test that an existing gateway is neither created nor polled."""
        target_vcd.add_edge_gateway(GATEWAY_NAME, acme_target["vdc"])

        task = await EdgeGatewayMigrator(context).migrate(GATEWAY_NAME, VDC_SCOPE)

        assert task.skipped
        assert target_vcd.posts == []


@pytest.mark.asyncio
class TestConfigureServices:
    """Test re-applying the full service configuration."""

    async def test_services_rebound_and_task_awaited(self, context, target_vcd, acme_target):
        """Test that DHCP and NAT return, rebound to target networks."""
        target_vcd.add_edge_gateway(GATEWAY_NAME, acme_target["vdc"])
        routed = target_vcd.add_org_network(NETWORK_NAME, acme_target["vdc"])

        task = await EdgeGatewayMigrator(context).configure_services(GATEWAY_NAME, VDC_SCOPE)

        assert task.operation is TaskOperation.CONFIGURE_SERVICES
        assert task.state is CreationState.READY
        assert target_vcd.posted_types == [MediaType.EDGE_GATEWAY_SERVICES]

        services = target_vcd.posted(MediaType.EDGE_GATEWAY_SERVICES)[0][
            "EdgeGatewayServiceConfiguration"
        ]
        assert services["GatewayDhcpService"]["Pool"]["Network"]["@href"] == routed
        interfaces = [
            rule["GatewayNatRule"]["Interface"]["@href"]
            for rule in as_list(services["NatService"]["NatRule"])
        ]
        assert interfaces == [acme_target["external_network"], routed]
        assert "LoadBalancerService" not in services

    async def test_missing_routed_network(self, context, target_vcd, acme_target):
        """Test that a rule on a network absent from the target is unresolved."""
        target_vcd.add_edge_gateway(GATEWAY_NAME, acme_target["vdc"])

        with pytest.raises(UnresolvedReferenceError, match=NETWORK_NAME):
            await EdgeGatewayMigrator(context).configure_services(GATEWAY_NAME, VDC_SCOPE)

        assert target_vcd.posts == []

    async def test_missing_gateway(self, context, target_vcd, acme_target):
        """Test that services cannot be applied to a gateway that does not exist."""
        with pytest.raises(UnresolvedReferenceError, match=GATEWAY_NAME):
            await EdgeGatewayMigrator(context).configure_services(GATEWAY_NAME, VDC_SCOPE)

        assert context.tasks[-1].state is CreationState.FAILED


@pytest.mark.asyncio
class TestNetworkMigrator:
    """Test org VDC network creation."""

    async def test_routed_network_attached_to_target_gateway(
        self, context, target_vcd, acme_target
    ):
        """Test that the network references the target gateway and is awaited."""
        gateway = target_vcd.add_edge_gateway(GATEWAY_NAME, acme_target["vdc"])

        task = await NetworkMigrator(context).migrate(NETWORK_NAME, VDC_SCOPE)

        assert task.state is CreationState.READY
        network = target_vcd.posted(MediaType.ORG_VDC_NETWORK)[0]["OrgVdcNetwork"]
        assert network["EdgeGateway"]["@href"] == gateway
        assert network["Configuration"]["FenceMode"] == "natRouted"

    async def test_routed_network_without_gateway(self, context, target_vcd, acme_target):
        """Test that a routed network without its target gateway is unresolved."""
        with pytest.raises(UnresolvedReferenceError, match=GATEWAY_NAME):
            await NetworkMigrator(context).migrate(NETWORK_NAME, VDC_SCOPE)

        assert target_vcd.posts == []

    async def test_network_never_ready(self, context, target_vcd, acme_target):
        """Test that a network that never reports status 1 times out."""
        target_vcd.add_edge_gateway(GATEWAY_NAME, acme_target["vdc"])
        target_vcd.network_status = "0"

        with pytest.raises(ReadinessTimeoutError, match="acme-routed"):
            await NetworkMigrator(context).migrate(NETWORK_NAME, VDC_SCOPE)

        assert target_vcd.posted_types == [MediaType.ORG_VDC_NETWORK]
