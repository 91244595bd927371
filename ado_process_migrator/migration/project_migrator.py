import logging
from typing import Any, Dict, Optional

from ado_process_migrator.migration.context import MigrationContext
from ado_process_migrator.migration.matching import EntityKey, find_by_name
from ado_process_migrator.migration.report import StepResult


class ProjectMigrator:
    """Resolves projects by name and creates or updates the target project."""

    def __init__(self, ctx: MigrationContext):
        self.ctx = ctx
        self.logger = logging.getLogger(__name__)

    def resolve_source_project(self) -> Optional[Dict[str, Any]]:
        """Find the source project (any state) and load it with its capabilities."""
        name = self.ctx.source_project_name
        try:
            project = find_by_name(self.ctx.source.get_projects(state_filter="All"), name)
            if project is None:
                self.logger.error(f"Source project '{name}' not found in {self.ctx.config.source_organization}")
                return None
            self.ctx.source_project = self.ctx.source.get_project(project["id"], include_capabilities=True)
        except Exception as e:
            self.logger.error(f"Error resolving source project '{name}': {str(e)}", exc_info=True)
            return None
        self.logger.info(f"Resolved source project '{name}' ({self.ctx.source_project.get('id')})")
        return self.ctx.source_project

    def resolve_target_project(self) -> Optional[Dict[str, Any]]:
        name = self.ctx.target_project_name
        project = find_by_name(self.ctx.target.get_projects(state_filter="All"), name)
        if project is None:
            self.logger.error(f"Target project '{name}' not found in {self.ctx.config.target_organization}")
            return None
        self.ctx.target_project = self.ctx.target.get_project(project["id"], include_capabilities=True)
        return self.ctx.target_project

    def migrate_project(self) -> StepResult:
        result = self.ctx.report.step("project")
        target = self.ctx.target
        name = self.ctx.target_project_name
        key = EntityKey(self.ctx.config.target_organization, "project", name)
        description = (self.ctx.source_project or {}).get("description") or ""
        visibility = self.ctx.config.target_project_visibility

        existing = find_by_name(target.get_projects(state_filter="All"), name)
        if existing:
            operation = target.update_project(existing["id"], {"description": description, "visibility": visibility})
            if operation.get("id"):
                target.wait_for_operation(operation)
            result.record_updated(key)
            project_id = existing["id"]
        else:
            if not self.ctx.target_process_id:
                result.warn(f"Cannot create project '{name}' without a target process", key)
                return result
            operation = target.create_project({
                "name": name,
                "description": description,
                "visibility": visibility,
                "capabilities": {
                    "versioncontrol": {"sourceControlType": self.ctx.config.target_version_control},
                    "processTemplate": {"templateTypeId": self.ctx.target_process_id},
                },
            })
            target.wait_for_operation(operation)
            result.record_created(key)
            created = find_by_name(target.get_projects(state_filter="All"), name)
            if created is None:
                result.warn(f"Project '{name}' was queued but cannot be found", key)
                return result
            project_id = created["id"]

        self.ctx.target_project = target.get_project(project_id, include_capabilities=True)
        current_process = ((self.ctx.target_project.get("capabilities") or {}).get("processTemplate") or {}).get("templateTypeId")
        if self.ctx.target_process_id and current_process and current_process != self.ctx.target_process_id:
            result.warn(f"Target project '{name}' uses process {current_process}, not {self.ctx.target_process_id}; "
                        f"change it in the organization settings", key)
        return result
