"""Unit tests for the migration orchestrator."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from fake_vcd import SOURCE_EXTERNAL_NETWORK_XML, SOURCE_USER_XML

from vcd_migrate.context import MigrationScope
from vcd_migrate.exceptions import ConfigurationError
from vcd_migrate.models import MediaType, ObjectKind
from vcd_migrate.orchestration import MigrationOrchestrator
from vcd_migrate.resources import CreationState, ExternalNetworkMigrator, MigrationTask

# Test constants
NO_SCOPE = MigrationScope()


@pytest.fixture
def offline_context():
    """Context stand-in for paths that never reach an endpoint."""
    context = Mock()
    context.tasks = []
    return context


class TestMigratorSelection:
    """Test kind-to-migrator dispatch."""

    def test_migrator_for_each_kind(self, offline_context):
        """Test that every migratable kind has a migrator."""
        orchestrator = MigrationOrchestrator(offline_context)

        migrator = orchestrator.migrator(ObjectKind.EXTERNAL_NETWORK)

        assert isinstance(migrator, ExternalNetworkMigrator)
        assert migrator.context is offline_context

    def test_unsupported_kind(self, offline_context):
        """Test that provider-side kinds cannot be migrated directly."""
        with pytest.raises(ConfigurationError, match="Right"):
            MigrationOrchestrator(offline_context).migrator(ObjectKind.RIGHT)


@pytest.mark.asyncio
class TestMigrateObject:
    """Test single-object migrations."""

    async def test_services_only_requires_gateway(self, offline_context):
        """Test that --services-only is rejected for other kinds."""
        orchestrator = MigrationOrchestrator(offline_context)

        with pytest.raises(ConfigurationError, match="EdgeGateway"):
            await orchestrator.migrate_object(
                ObjectKind.ORG_VDC, "acme-vdc", MigrationScope(org="acme"), services_only=True
            )

    async def test_services_only_dispatches(self, offline_context):
        """Test that --services-only re-applies services instead of creating."""
        orchestrator = MigrationOrchestrator(offline_context)
        task = MigrationTask(kind=ObjectKind.EDGE_GATEWAY, name="acme-egw")

        with patch(
            "vcd_migrate.orchestration.EdgeGatewayMigrator.configure_services",
            new=AsyncMock(return_value=task),
        ) as configure:
            result = await orchestrator.migrate_object(
                ObjectKind.EDGE_GATEWAY, "acme-egw", NO_SCOPE, services_only=True
            )

        assert result is task
        configure.assert_awaited_once_with("acme-egw", NO_SCOPE, None)

    async def test_missing_file(self, offline_context, tmp_path):
        """Test that a missing source file is a configuration error."""
        orchestrator = MigrationOrchestrator(offline_context)

        with pytest.raises(ConfigurationError, match="not found"):
            await orchestrator.migrate_from_file(
                ObjectKind.ADMIN_USER, tmp_path / "alice.xml", NO_SCOPE
            )

    async def test_malformed_file(self, offline_context, tmp_path):
        """Test that a file that is not XML is a configuration error."""
        path = tmp_path / "broken.xml"
        path.write_text("this is not xml")

        with pytest.raises(ConfigurationError, match="not a valid XML document"):
            await MigrationOrchestrator(offline_context).migrate_from_file(
                ObjectKind.EXTERNAL_NETWORK, path, NO_SCOPE
            )

    async def test_file_without_name(self, offline_context, tmp_path):
        """Test that a document lacking a name attribute is refused."""
        path = tmp_path / "nameless.xml"
        path.write_text('<User xmlns="http://www.vmware.com/vcloud/v1.5"/>')

        with pytest.raises(ConfigurationError, match="no named"):
            await MigrationOrchestrator(offline_context).migrate_from_file(
                ObjectKind.ADMIN_USER, path, NO_SCOPE
            )

    async def test_file_passes_representation(self, offline_context, tmp_path):
        """Test that the file's document is used as the source representation."""
        path = tmp_path / "alice.xml"
        path.write_text(SOURCE_USER_XML)
        orchestrator = MigrationOrchestrator(offline_context)

        with patch.object(orchestrator, "migrate_object", new=AsyncMock()) as migrate:
            await orchestrator.migrate_from_file(
                ObjectKind.ADMIN_USER, path, MigrationScope(org="acme")
            )

        args = migrate.await_args.args
        assert args[:2] == (ObjectKind.ADMIN_USER, "alice")
        assert args[4].body["FullName"] == "Alice Example"

    async def test_file_migration_without_source_endpoint(self, context, target_vcd, tmp_path):
        """Test that a captured external network is created with no source reads."""
        path = tmp_path / "ext-net-01.xml"
        path.write_text(SOURCE_EXTERNAL_NETWORK_XML)
        context.config.provider.portgroup = "pg-ext-01"
        context.source = None
        context.source_locator = None

        task = await MigrationOrchestrator(context).migrate_from_file(
            ObjectKind.EXTERNAL_NETWORK, path, NO_SCOPE
        )

        assert task.state is CreationState.READY
        assert target_vcd.posted_types == [MediaType.EXTERNAL_NETWORK]


class TestSummary:
    """Test task summaries."""

    def test_summary_counts(self, offline_context):
        """Test that created, skipped and failed tasks are counted."""
        ready = MigrationTask(kind=ObjectKind.ORGANIZATION, name="acme")
        ready.advance(CreationState.READY)
        skipped = MigrationTask(kind=ObjectKind.ORG_VDC, name="acme-vdc")
        skipped.advance(CreationState.SKIPPED)
        failed = MigrationTask(kind=ObjectKind.EDGE_GATEWAY, name="acme-egw")
        failed.fail(RuntimeError("boom"))
        offline_context.tasks.extend([ready, skipped, failed])

        results = MigrationOrchestrator(offline_context).summarize()

        assert results["success"] is False
        assert results["summary"]["created"] == 1
        assert results["summary"]["skipped"] == 1
        assert results["summary"]["errors"] == [
            {"kind": "EdgeGateway", "name": "acme-egw", "error": "boom"}
        ]
        assert results["tasks"][2]["history"] == ["Fetched", "Failed"]
        assert "start_time" not in results

    def test_empty_run_succeeds(self, offline_context):
        """Test that a run with no tasks reports success."""
        results = MigrationOrchestrator(offline_context).summarize()

        assert results["success"] is True
        assert results["summary"]["total_tasks"] == 0
