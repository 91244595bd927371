"""
Process content migration.

Each ``migrate_*`` method is one reconciliation pass: read the entities from
the source, look them up in the target, create what is missing. Failures of
individual entities are recorded as warnings on the step and the pass
continues with the next entity.
"""

import logging
from typing import Any, Dict, List, Optional

from ado_process_migrator.migration.context import MigrationContext
from ado_process_migrator.migration.matching import (
    EntityKey,
    find_by,
    find_by_name,
    find_control,
    find_field,
    find_group,
    find_page,
    find_section,
    is_custom_field,
    is_custom_page,
    is_system,
)
from ado_process_migrator.migration.report import StepResult

PAGE_KEYS = ("label", "pageType", "visible", "locked", "order", "isContribution", "contribution", "sticky")
GROUP_KEYS = ("label", "visible", "order", "height", "isContribution", "contribution")
CONTROL_KEYS = ("id", "label", "controlType", "readOnly", "visible", "order", "height", "metadata",
                "watermark", "isContribution", "contribution")


def compact(data: Dict[str, Any], keys=None) -> Dict[str, Any]:
    """Copy ``data`` (restricted to ``keys``) without None values."""
    keys = keys if keys is not None else data.keys()
    return {key: data[key] for key in keys if data.get(key) is not None}


class ProcessContentMigrator:
    """Runs the process, field, WIT, behavior, picklist, state, rule and layout passes."""

    def __init__(self, ctx: MigrationContext):
        self.ctx = ctx
        self.source = ctx.source
        self.target = ctx.target
        self.logger = logging.getLogger(__name__)
        self._target_picklists: Optional[List[Dict[str, Any]]] = None

    def _key(self, kind: str, name: str, wit: Optional[Dict[str, Any]] = None) -> EntityKey:
        scope = self.ctx.process_name or self.ctx.config.target_organization
        if wit is not None:
            scope = f"{scope}/{wit.get('name')}"
        return EntityKey(scope, kind, name)

    # Process

    def migrate_process(self) -> StepResult:
        result = self.ctx.report.step("process")
        template = (self.ctx.source_project.get("capabilities") or {}).get("processTemplate") or {}
        type_id = template.get("templateTypeId")
        if not type_id:
            result.warn(f"Project '{self.ctx.source_project_name}' has no process template capability")
            return result

        try:
            source_process = self.source.get_process(type_id)
        except Exception as e:
            result.warn(f"Could not read source process {type_id}: {str(e)}")
            return result
        self.ctx.source_process = source_process
        self.logger.info(f"Source process: {source_process.get('name')} ({type_id})")

        key = self._key("process", source_process["name"])
        target_process = find_by_name(self.target.get_processes(), source_process["name"])
        if target_process:
            result.record_skipped(key)
        else:
            target_process = self.target.create_process(compact({
                "name": source_process["name"],
                "description": source_process.get("description"),
                "parentProcessTypeId": source_process.get("parentProcessTypeId"),
            }))
            result.record_created(key)
        self.ctx.target_process = target_process
        return result

    def resolve_processes(self) -> StepResult:
        """Look up both processes without creating anything."""
        result = self.ctx.report.step("resolve-process")
        template = (self.ctx.source_project.get("capabilities") or {}).get("processTemplate") or {}
        try:
            self.ctx.source_process = self.source.get_process(template.get("templateTypeId"))
        except Exception as e:
            result.warn(f"Could not read source process: {str(e)}")
            return result
        self.ctx.target_process = find_by_name(self.target.get_processes(), self.ctx.source_process.get("name"))
        if not self.ctx.target_process:
            result.warn(f"Target process '{self.ctx.process_name}' does not exist; run the process migration first")
            return result
        self._pair_work_item_types(result)
        return result

    # Organization fields

    def migrate_custom_fields(self) -> StepResult:
        result = self.ctx.report.step("fields")
        target_fields = self.target.get_fields()

        for field in self.source.get_fields():
            if not is_custom_field(field):
                continue
            key = EntityKey(self.ctx.config.target_organization, "field", field["referenceName"])
            if find_field(target_fields, field):
                result.record_skipped(key)
                continue
            try:
                body = compact(field, ("name", "referenceName", "type", "description", "usage", "isQueryable",
                                       "isIdentity", "isPicklist", "isPicklistSuggested", "canSortBy"))
                body["readOnly"] = False
                if field.get("isPicklist") and field.get("picklistId"):
                    target_list_id = self.ensure_picklist(field["picklistId"], result)
                    if not target_list_id:
                        result.warn(f"Picklist for {field['referenceName']} could not be migrated, field skipped", key)
                        continue
                    body["picklistId"] = target_list_id
                target_fields.append(self.target.create_field(body))
                result.record_created(key)
            except Exception as e:
                result.warn(f"Failed to create field {field['referenceName']}: {str(e)}", key)

        self.ensure_tracking_field(target_fields, result)
        return result

    def ensure_tracking_field(self, target_fields: List[Dict[str, Any]], result: StepResult):
        reference_name = self.ctx.config.tracking_field
        key = EntityKey(self.ctx.config.target_organization, "field", reference_name)
        if find_by(target_fields, "referenceName", reference_name):
            result.record_skipped(key)
            return
        try:
            target_fields.append(self.target.create_field({
                "name": reference_name.split(".", 1)[-1],
                "referenceName": reference_name,
                "type": "integer",
                "usage": "workItem",
                "readOnly": False,
                "description": "Id of the source work item this item was migrated from",
            }))
            result.record_created(key)
        except Exception as e:
            result.warn(f"Failed to create tracking field {reference_name}: {str(e)}", key)

    # Work item types

    def migrate_work_item_types(self) -> StepResult:
        result = self.ctx.report.step("work-item-types")
        source_wits = self.source.get_work_item_types(self.ctx.source_process_id)
        target_wits = self.target.get_work_item_types(self.ctx.target_process_id)

        for wit in source_wits:
            if is_system(wit):
                continue
            key = self._key("work item type", wit["name"])
            if find_by_name(target_wits, wit["name"]):
                result.record_skipped(key)
                continue
            try:
                self.target.create_work_item_type(self.ctx.target_process_id, compact({
                    "name": wit["name"],
                    "description": wit.get("description"),
                    "color": wit.get("color"),
                    "icon": wit.get("icon"),
                    "isDisabled": wit.get("isDisabled"),
                    "inheritsFrom": wit.get("inherits"),
                }))
                result.record_created(key)
            except Exception as e:
                result.warn(f"Failed to create work item type {wit['name']}: {str(e)}", key)

        self._pair_work_item_types(result, source_wits)
        return result

    def _pair_work_item_types(self, result: StepResult, source_wits=None):
        if source_wits is None:
            source_wits = self.source.get_work_item_types(self.ctx.source_process_id)
        target_wits = self.target.get_work_item_types(self.ctx.target_process_id)
        self.ctx.wit_pairs = []
        for wit in source_wits:
            target_wit = find_by_name(target_wits, wit["name"])
            if target_wit is None:
                result.warn(f"Work item type {wit['name']} has no counterpart in the target process",
                            self._key("work item type", wit["name"]))
                continue
            self.ctx.wit_pairs.append((wit, target_wit))

    # Field assignments

    def migrate_field_assignments(self) -> StepResult:
        result = self.ctx.report.step("field-assignments")
        tracking_field = self.ctx.config.tracking_field

        for index, (source_wit, target_wit) in enumerate(self.ctx.wit_pairs):
            if is_system(target_wit):
                target_wit = self._derive_work_item_type(target_wit, result)
                if target_wit is None:
                    continue
                self.ctx.wit_pairs[index] = (source_wit, target_wit)
            try:
                source_fields = self.source.get_work_item_type_fields(self.ctx.source_process_id, source_wit["referenceName"])
                target_fields = self.target.get_work_item_type_fields(self.ctx.target_process_id, target_wit["referenceName"])
            except Exception as e:
                result.warn(f"Could not list fields of {source_wit['name']}: {str(e)}")
                continue

            for field in source_fields:
                if is_system(field):
                    continue
                key = self._key("field assignment", field["referenceName"], source_wit)
                if find_by(target_fields, "referenceName", field["referenceName"]):
                    result.record_skipped(key)
                    continue
                try:
                    detail = self.source.get_work_item_type_field(self.ctx.source_process_id, source_wit["referenceName"],
                                                                  field["referenceName"], expand="all")
                    body = compact(detail, ("referenceName", "allowedValues", "required", "readOnly",
                                            "defaultValue", "allowGroups"))
                    target_fields.append(self.target.add_work_item_type_field(
                        self.ctx.target_process_id, target_wit["referenceName"], body))
                    result.record_created(key)
                except Exception as e:
                    result.warn(f"Failed to assign {field['referenceName']} to {target_wit['name']}: {str(e)}", key)

            key = self._key("field assignment", tracking_field, target_wit)
            if find_by(target_fields, "referenceName", tracking_field):
                result.record_skipped(key)
                continue
            try:
                self.target.add_work_item_type_field(self.ctx.target_process_id, target_wit["referenceName"],
                                                     {"referenceName": tracking_field, "required": False,
                                                      "readOnly": False})
                result.record_created(key)
            except Exception as e:
                result.warn(f"Failed to assign tracking field to {target_wit['name']}: {str(e)}", key)
        return result

    def _derive_work_item_type(self, target_wit: Dict[str, Any], result: StepResult) -> Optional[Dict[str, Any]]:
        """
        Create the inherited copy of a system work item type.

        An inherited process only accepts field changes on inherited types, so
        an untouched system type (Bug, Task, ...) is derived before anything is
        assigned to it. The derived type replaces the system one in the process.

        Returns:
            The derived type, or None when the target refused to create it
        """
        key = self._key("work item type", target_wit["name"])
        try:
            derived = self.target.create_work_item_type(self.ctx.target_process_id, compact({
                "name": target_wit["name"],
                "description": target_wit.get("description"),
                "color": target_wit.get("color"),
                "icon": target_wit.get("icon"),
                "inheritsFrom": target_wit["referenceName"],
            }))
        except Exception as e:
            result.warn(f"Failed to derive {target_wit['name']} from {target_wit['referenceName']}, "
                        f"its fields are not assigned: {str(e)}", key)
            return None
        self.logger.info(f"Derived {derived.get('referenceName')} from system type {target_wit['referenceName']}")
        result.record_created(key)
        return derived

    # Behaviors

    def migrate_behaviors(self) -> StepResult:
        result = self.ctx.report.step("behaviors")
        source_behaviors = self.source.get_behaviors(self.ctx.source_process_id, expand="fields")
        target_behaviors = self.target.get_behaviors(self.ctx.target_process_id, expand="fields")

        for behavior in source_behaviors:
            key = self._key("behavior", behavior.get("name"))
            if find_by_name(target_behaviors, behavior.get("name")):
                result.record_skipped(key)
                continue
            inherits = behavior.get("inherits")
            if isinstance(inherits, dict):
                inherits = inherits.get("behaviorRefName")
            try:
                target_behaviors.append(self.target.create_behavior(self.ctx.target_process_id, compact({
                    "name": behavior.get("name"),
                    "color": behavior.get("color"),
                    "inherits": inherits,
                    "referenceName": behavior.get("referenceName"),
                })))
                result.record_created(key)
            except Exception as e:
                result.warn(f"Failed to create behavior {behavior.get('name')}: {str(e)}", key)
        return result

    # Picklists

    def ensure_picklist(self, source_list_id: str, result: StepResult) -> Optional[str]:
        """Make sure a source picklist exists in the target and return the target picklist id."""
        if source_list_id in self.ctx.picklist_ids:
            return self.ctx.picklist_ids[source_list_id]

        try:
            picklist = self.source.get_picklist(source_list_id)
        except Exception as e:
            result.warn(f"Could not read picklist {source_list_id}: {str(e)}")
            return None
        if not picklist or not picklist.get("name"):
            result.warn(f"Picklist {source_list_id} has no name, skipping")
            return None

        if self._target_picklists is None:
            self._target_picklists = self.target.get_picklists()
        key = EntityKey(self.ctx.config.target_organization, "picklist", picklist["name"])
        existing = find_by_name(self._target_picklists, picklist["name"])
        if existing:
            result.record_skipped(key)
        else:
            existing = self.target.create_picklist(compact({
                "name": picklist["name"],
                "type": picklist.get("type"),
                "isSuggested": picklist.get("isSuggested"),
                "items": picklist.get("items") or [],
            }))
            self._target_picklists.append(existing)
            result.record_created(key)
        self.ctx.picklist_ids[source_list_id] = existing.get("id")
        return existing.get("id")

    def migrate_picklists(self) -> StepResult:
        result = self.ctx.report.step("picklists")
        for picklist in self.source.get_picklists():
            if not picklist.get("id") or not picklist.get("name"):
                result.warn(f"Skipping picklist with empty id or name: {picklist}")
                continue
            try:
                self.ensure_picklist(picklist["id"], result)
            except Exception as e:
                result.warn(f"Failed to migrate picklist {picklist['name']}: {str(e)}",
                            EntityKey(self.ctx.config.target_organization, "picklist", picklist["name"]))
        return result

    # States

    def migrate_states(self, create: bool = True) -> StepResult:
        """
        Create missing states (unless ``create`` is False) and build the
        state map consumed by the work item pass.
        """
        result = self.ctx.report.step("states" if create else "state-map")

        for source_wit, target_wit in self.ctx.wit_pairs:
            try:
                source_states = self.source.get_states(self.ctx.source_process_id, source_wit["referenceName"])
                target_states = self.target.get_states(self.ctx.target_process_id, target_wit["referenceName"])
            except Exception as e:
                result.warn(f"Could not list states of {source_wit['name']}: {str(e)}")
                continue

            if create:
                for state in source_states:
                    self._reconcile_state(state, source_wit, target_wit, target_states, result)

            for note in self.ctx.state_map.map_states(source_wit["name"], source_states, target_states):
                result.warn(note, self._key("state", source_wit["name"], source_wit))
        return result

    def _reconcile_state(self, state: Dict[str, Any], source_wit: Dict[str, Any], target_wit: Dict[str, Any],
                         target_states: List[Dict[str, Any]], result: StepResult):
        key = self._key("state", state["name"], source_wit)
        target_state = find_by_name(target_states, state["name"])
        if target_state:
            result.record_skipped(key)
        else:
            try:
                target_state = self.target.create_state(self.ctx.target_process_id, target_wit["referenceName"], compact({
                    "name": state["name"],
                    "color": state.get("color"),
                    "stateCategory": state.get("stateCategory"),
                    "order": state.get("order"),
                }))
                target_states.append(target_state)
                result.record_created(key)
            except Exception as e:
                result.warn(f"Failed to create state {state['name']} on {target_wit['name']}: {str(e)}", key)
                return

        if state.get("hidden") and state.get("customizationType") == "system" and not target_state.get("hidden"):
            try:
                self.target.hide_state(self.ctx.target_process_id, target_wit["referenceName"], target_state["id"])
                target_state["hidden"] = True
                result.record_updated(key)
            except Exception as e:
                result.warn(f"Could not hide state {state['name']} on {target_wit['name']} "
                            f"(it may already be hidden): {str(e)}", key)

    # Rules

    def migrate_rules(self) -> StepResult:
        result = self.ctx.report.step("rules")
        for source_wit, target_wit in self.ctx.wit_pairs:
            try:
                source_rules = self.source.get_rules(self.ctx.source_process_id, source_wit["referenceName"])
                target_rules = self.target.get_rules(self.ctx.target_process_id, target_wit["referenceName"])
            except Exception as e:
                result.warn(f"Could not list rules of {source_wit['name']}: {str(e)}")
                continue

            for rule in source_rules:
                if is_system(rule):
                    continue
                if not rule.get("name"):
                    result.warn(f"Rule {rule.get('id')} on {source_wit['name']} has no name, skipping")
                    continue
                key = self._key("rule", rule["name"], source_wit)
                if find_by_name(target_rules, rule["name"]):
                    result.record_skipped(key)
                    continue
                try:
                    target_rules.append(self.target.create_rule(self.ctx.target_process_id, target_wit["referenceName"], {
                        "name": rule["name"],
                        "conditions": rule.get("conditions") or [],
                        "actions": rule.get("actions") or [],
                        "isDisabled": bool(rule.get("isDisabled")),
                    }))
                    result.record_created(key)
                except Exception as e:
                    result.warn(f"Failed to create rule {rule['name']} on {target_wit['name']}: {str(e)}", key)
        return result

    # Layout

    def migrate_layouts(self) -> StepResult:
        result = self.ctx.report.step("layout")
        for source_wit, target_wit in self.ctx.wit_pairs:
            try:
                source_layout = self.source.get_layout(self.ctx.source_process_id, source_wit["referenceName"])
                target_layout = self.target.get_layout(self.ctx.target_process_id, target_wit["referenceName"])
            except Exception as e:
                result.warn(f"Could not read layout of {source_wit['name']}: {str(e)}")
                continue

            target_pages = target_layout.get("pages") or []
            for page in source_layout.get("pages") or []:
                if not is_custom_page(page):
                    continue
                try:
                    self._migrate_page(page, source_wit, target_wit, target_pages, result)
                except Exception as e:
                    result.warn(f"Failed to migrate page {page.get('label')} on {target_wit['name']}: {str(e)}",
                                self._key("page", page.get("label"), source_wit))
        return result

    def _migrate_page(self, page: Dict[str, Any], source_wit: Dict[str, Any], target_wit: Dict[str, Any],
                      target_pages: List[Dict[str, Any]], result: StepResult):
        process_id = self.ctx.target_process_id
        wit_ref = target_wit["referenceName"]
        key = self._key("page", page.get("label"), source_wit)

        body = compact(page, PAGE_KEYS)
        existing = find_page(target_pages, page)
        if existing:
            body["id"] = existing["id"]
            updated = self.target.update_page(process_id, wit_ref, body)
            target_page = updated if updated.get("sections") is not None else existing
            result.record_updated(key)
        else:
            target_page = self.target.add_page(process_id, wit_ref, body)
            target_pages.append(target_page)
            result.record_created(key)

        for section in page.get("sections") or []:
            if not section.get("groups"):
                continue
            target_section = find_section(target_page.get("sections") or [], section)
            section_key = self._key("section", f"{page.get('label')}/{section['id']}", source_wit)
            if target_section is None:
                try:
                    updated = self.target.add_section(process_id, wit_ref, target_page,
                                                      {"id": section["id"], "groups": []})
                except Exception as e:
                    result.warn(f"Failed to add section {section['id']} to page {page.get('label')}: {str(e)}",
                                section_key)
                    continue
                target_page = updated if updated.get("sections") is not None else target_page
                target_section = find_section(target_page.get("sections") or [], section)
                if target_section is None:
                    target_section = {"id": section["id"], "groups": []}
                    target_page.setdefault("sections", []).append(target_section)
                result.record_created(section_key)
            else:
                result.record_skipped(section_key)

            for group in section["groups"]:
                try:
                    self._migrate_group(group, target_page, target_section, source_wit, wit_ref, result)
                except Exception as e:
                    result.warn(f"Failed to add group {group.get('label')} to page {page.get('label')}: {str(e)}",
                                self._key("group", group.get("label"), source_wit))

    def _migrate_group(self, group: Dict[str, Any], target_page: Dict[str, Any], target_section: Dict[str, Any],
                       source_wit: Dict[str, Any], wit_ref: str, result: StepResult):
        process_id = self.ctx.target_process_id
        key = self._key("group", group.get("label"), source_wit)
        target_groups = target_section.setdefault("groups", [])
        target_group = find_group(target_groups, group)
        if target_group:
            result.record_skipped(key)
        else:
            target_group = self.target.add_group(process_id, wit_ref, target_page["id"], target_section["id"],
                                                 compact(group, GROUP_KEYS))
            target_groups.append(target_group)
            result.record_created(key)

        target_controls = target_group.setdefault("controls", [])
        for control in group.get("controls") or []:
            control_key = self._key("control", control.get("id"), source_wit)
            if find_control(target_controls, control):
                result.record_skipped(control_key)
                continue
            try:
                target_controls.append(self.target.add_control(process_id, wit_ref, target_group["id"],
                                                               compact(control, CONTROL_KEYS)))
                result.record_created(control_key)
            except Exception as e:
                result.warn(f"Failed to add control {control.get('id')} to group {group.get('label')}: {str(e)}",
                            control_key)
