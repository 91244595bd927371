"""
Migration orchestrator.

Runs the reconciliation steps in dependency order:

    source project -> process -> fields -> work item types -> field assignments
    -> behaviors -> picklists -> states (+ state map) -> rules -> layout
    -> target project -> work items

Every step only creates what is missing, so an interrupted run can simply be
started again. The only hard stop is a source project that cannot be found.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ado_process_migrator.config.config import MigrationConfig
from ado_process_migrator.migration.context import MigrationContext
from ado_process_migrator.migration.process_migrator import ProcessContentMigrator
from ado_process_migrator.migration.project_migrator import ProjectMigrator
from ado_process_migrator.migration.report import MigrationReport
from ado_process_migrator.utils.azure_client import AzureDevOpsClient
from ado_process_migrator.work_items.work_item_copier import WorkItemCopier


class MigrationOrchestrator:
    def __init__(self, config: MigrationConfig, source: Optional[AzureDevOpsClient] = None,
                 target: Optional[AzureDevOpsClient] = None):
        self.config = config
        self.source = source or AzureDevOpsClient.source_from_config(config)
        self.target = target or AzureDevOpsClient.target_from_config(config)
        self.logger = logging.getLogger(__name__)

    def run(self) -> MigrationReport:
        ctx = MigrationContext(self.config, self.source, self.target)
        report = ctx.report
        self.logger.info(f"Migrating '{self.config.source_project}' from {self.config.source_organization} "
                         f"to '{ctx.target_project_name}' in {self.config.target_organization}")
        self.logger.info(f"Process migration: {'Enabled' if self.config.migration_process else 'Disabled'}, "
                         f"work item migration: {'Enabled' if self.config.migration_work_items else 'Disabled'}")

        projects = ProjectMigrator(ctx)
        if projects.resolve_source_project() is None:
            report.stop(f"source project '{self.config.source_project}' not found")
            return self._finish(report)

        process = ProcessContentMigrator(ctx)
        if self.config.migration_process:
            self._run_process_steps(ctx, process, projects)
        elif self.config.migration_work_items:
            self._run_step(ctx, "resolve-process", process.resolve_processes)
            if ctx.target_process:
                self._run_step(ctx, "state-map", lambda: process.migrate_states(create=False))

        if self.config.migration_work_items:
            if ctx.target_project is None and not self._resolve_target_project(ctx, projects):
                report.stop(f"target project '{ctx.target_project_name}' not found")
                return self._finish(report)
            self._run_step(ctx, "work-items", WorkItemCopier(ctx).run)

        return self._finish(report)

    def _run_process_steps(self, ctx: MigrationContext, process: ProcessContentMigrator, projects: ProjectMigrator):
        self._run_step(ctx, "process", process.migrate_process)
        if not ctx.target_process:
            ctx.report.step("process-content").warn("No target process; process content and project steps skipped")
            return

        self._run_step(ctx, "fields", process.migrate_custom_fields)
        self._run_step(ctx, "work-item-types", process.migrate_work_item_types)
        self._run_step(ctx, "field-assignments", process.migrate_field_assignments)
        self._run_step(ctx, "behaviors", process.migrate_behaviors)
        self._run_step(ctx, "picklists", process.migrate_picklists)
        self._run_step(ctx, "states", process.migrate_states)
        self._run_step(ctx, "rules", process.migrate_rules)
        self._run_step(ctx, "layout", process.migrate_layouts)
        self._run_step(ctx, "project", projects.migrate_project)

    def _run_step(self, ctx: MigrationContext, name: str, step: Callable):
        """Run one step; an unexpected failure ends that step with a warning, not the run."""
        self.logger.info(f"Step: {name}")
        try:
            step()
        except Exception as e:
            self.logger.error(f"Step {name} failed: {str(e)}", exc_info=True)
            result = ctx.report.get_step(name) or ctx.report.step(name)
            result.warn(f"Step failed: {str(e)}")

    def _resolve_target_project(self, ctx: MigrationContext, projects: ProjectMigrator) -> bool:
        try:
            return projects.resolve_target_project() is not None
        except Exception as e:
            self.logger.error(f"Error resolving target project: {str(e)}", exc_info=True)
            return False

    def _finish(self, report: MigrationReport) -> MigrationReport:
        report.finished_at = datetime.now()
        for line in report.summary_lines():
            self.logger.info(line)
        return report


def migrate_project(source_organization: str, target_organization: str, source_token: str, target_token: str,
                    source_project_name: str, target_project_name: Optional[str] = None, api_version: str = "7.1",
                    **settings) -> MigrationReport:
    """
    Migrate the process of a project (and optionally its work items) to another organization.

    Remaining settings (``migration_process``, ``migration_work_items``, ...) are
    taken from the keyword arguments, then from the environment / .env file.
    """
    config = MigrationConfig(
        source_organization=source_organization,
        target_organization=target_organization,
        source_pat=source_token,
        target_pat=target_token,
        source_project=source_project_name,
        target_project=target_project_name,
        api_version=api_version,
        **settings
    )
    return MigrationOrchestrator(config).run()
