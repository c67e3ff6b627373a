"""Unit tests for the VDC migrator."""

from unittest.mock import patch

import pytest
from fake_vcd import SOURCE_VDC_XML

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import AmbiguousError, NotFoundError
from vcd_migrate.models import MediaType, ObjectKind, ObjectRepresentation
from vcd_migrate.resources import CreationState, VdcMigrator

# Test constants
VDC_NAME = "acme-vdc"
ACME = MigrationScope(org="acme")


@pytest.fixture
def acme_org(target_vcd):
    """Target holding the acme organization but none of its VDCs."""
    return target_vcd.add_org("acme")


@pytest.mark.asyncio
class TestVdcMigrator:
    """Test VDC creation against the fake endpoints."""

    async def test_vdc_created_on_single_pool(self, context, target_vcd, acme_org):
        """Test that provider resources are resolved and the VDC is created."""
        task = await VdcMigrator(context).migrate(VDC_NAME, ACME)

        assert task.state is CreationState.READY
        assert task.target_ref.name == VDC_NAME
        assert target_vcd.posted_types == [MediaType.CREATE_VDC_PARAMS]

        params = target_vcd.posted(MediaType.CREATE_VDC_PARAMS)[0]["CreateVdcParams"]
        assert params["@name"] == VDC_NAME
        assert params["NetworkPoolReference"]["@name"] == "np-vxlan"
        assert params["ProviderVdcReference"]["@href"] == target_vcd.url(
            "/api/admin/providervdc/pvdc-gold"
        )
        profile = params["VdcStorageProfile"]["ProviderVdcStorageProfile"]
        assert profile["@href"] == target_vcd.url("/api/admin/pvdcStorageProfile/sp-any")

    async def test_dropped_profiles_warned_for_file_source(self, context, acme_org):
        """Test that a captured VDC with several storage profiles logs the ones left behind."""
        source = ObjectRepresentation.from_xml(ObjectKind.ORG_VDC, SOURCE_VDC_XML)
        migrator = VdcMigrator(context)

        with patch.object(migrator, "_logger") as log:
            task = await migrator.migrate(VDC_NAME, ACME, source=source)

        assert task.state is CreationState.READY
        log.warning.assert_called_once()
        assert log.warning.call_args.kwargs["dropped"] == ["Gold", "Silver"]

    async def test_storage_profile_reference_kind(self, context):
        """Test that the "*" profile resolves as a provider VDC storage profile."""
        migrator = VdcMigrator(context)
        provider_vdc = await context.target_locator.find_single(ObjectKind.PROVIDER_VDC)

        profile = await migrator.any_storage_profile(provider_vdc)

        assert profile.kind is ObjectKind.PROVIDER_VDC_STORAGE_PROFILE
        assert profile.name == "*"

    async def test_several_network_pools_are_ambiguous(self, context, target_vcd, acme_org):
        """Test that a second network pool aborts before any creation call."""
        target_vcd.add_record(
            "networkPool", "np-vlan", target_vcd.url("/api/admin/extension/networkPool/np-vlan")
        )

        with pytest.raises(AmbiguousError, match="np-vlan, np-vxlan"):
            await VdcMigrator(context).migrate(VDC_NAME, ACME)

        assert MediaType.CREATE_VDC_PARAMS not in target_vcd.posted_types
        assert context.tasks[-1].state is CreationState.FAILED

    async def test_no_network_pool(self, context, target_vcd, acme_org):
        """Test that a target without network pools is an error."""
        target_vcd.records["networkPool"].clear()

        with pytest.raises(NotFoundError, match="network pool"):
            await VdcMigrator(context).migrate(VDC_NAME, ACME)

        assert target_vcd.posts == []

    async def test_several_provider_vdcs_need_a_choice(self, context, target_vcd, acme_org):
        """Test that the operator must name the provider VDC when several exist."""
        target_vcd.add_record(
            "providerVdc", "pvdc-silver", target_vcd.url("/api/admin/providervdc/pvdc-silver")
        )

        with pytest.raises(AmbiguousError, match="pvdc-gold, pvdc-silver"):
            await VdcMigrator(context).migrate(VDC_NAME, ACME)

        context.config.provider.provider_vdc = "pvdc-gold"
        task = await VdcMigrator(context).migrate(VDC_NAME, ACME)

        assert task.state is CreationState.READY

    async def test_existing_vdc_is_skipped(self, context, target_vcd, acme_org):
        """Test that a VDC already in the target organization is not created."""
        target_vcd.add_vdc(VDC_NAME, acme_org)

        task = await VdcMigrator(context).migrate(VDC_NAME, ACME)

        assert task.skipped
        assert target_vcd.posts == []

    async def test_vdc_requires_target_org(self, context, target_vcd):
        """Test that a missing target organization fails the task."""
        with pytest.raises(NotFoundError, match="acme"):
            await VdcMigrator(context).migrate(VDC_NAME, ACME)

        assert context.tasks[-1].state is CreationState.FAILED
