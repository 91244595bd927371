"""
Work Item Copier module.

Copies the work items of the source project into the target project. A
target item records its source id in the tracking field, so a repeated run
finds it again instead of creating a duplicate. Items are processed in
ascending id order so a parent is copied before its children refer to it.

Already-migrated items are not re-created but are still reprocessed: their
attachments and comments are reconciled (missing ones are added).
"""

import logging
from typing import Any, Dict, List, Optional

from ado_process_migrator.migration.context import MigrationContext
from ado_process_migrator.migration.matching import EntityKey
from ado_process_migrator.migration.report import StepResult
from ado_process_migrator.work_items.attachments import AttachmentMigrator
from ado_process_migrator.work_items.queries import (
    fetch_project_work_items,
    fetch_work_items,
    query_all_ids,
    tracked_items_query,
    work_item_id,
)

PARENT_LINK = "System.LinkTypes.Hierarchy-Reverse"

# Fields the service computes or that only make sense in the source project
SKIPPED_FIELDS = {
    "System.Id",
    "System.Rev",
    "System.Watermark",
    "System.TeamProject",
    "System.WorkItemType",
    "System.State",
    "System.Reason",
    "System.AreaPath",
    "System.AreaId",
    "System.IterationPath",
    "System.IterationId",
    "System.NodeName",
    "System.Parent",
    "System.CreatedDate",
    "System.CreatedBy",
    "System.ChangedDate",
    "System.ChangedBy",
    "System.AuthorizedDate",
    "System.AuthorizedAs",
    "System.RevisedDate",
    "System.PersonId",
    "System.CommentCount",
    "System.BoardColumn",
    "System.BoardColumnDone",
    "System.BoardLane",
    "System.ExternalLinkCount",
    "System.HyperLinkCount",
    "System.AttachedFileCount",
    "System.RelatedLinkCount",
    "System.RemoteLinkCount",
    "Microsoft.VSTS.Common.StateChangeDate",
    "Microsoft.VSTS.Common.ActivatedDate",
    "Microsoft.VSTS.Common.ActivatedBy",
    "Microsoft.VSTS.Common.ResolvedDate",
    "Microsoft.VSTS.Common.ResolvedBy",
    "Microsoft.VSTS.Common.ClosedDate",
    "Microsoft.VSTS.Common.ClosedBy",
}
SKIPPED_FIELD_PREFIXES = ("System.AreaLevel", "System.IterationLevel", "WEF_")

logger = logging.getLogger(__name__)


def parent_id(work_item: Dict[str, Any]) -> Optional[int]:
    for relation in work_item.get("relations") or []:
        if relation.get("rel") == PARENT_LINK:
            try:
                return int(relation["url"].rstrip("/").rsplit("/", 1)[-1])
            except (KeyError, ValueError):
                return None
    return None


def copyable_fields(fields: Dict[str, Any], tracking_field: str) -> Dict[str, Any]:
    """
    Writable fields of a source work item.

    Identity fields (Assigned To and custom identity fields) come back as
    dicts; they are written as the identity's unique name, which the target
    resolves against its own users.
    """
    copied = {}
    for name, value in fields.items():
        if name in SKIPPED_FIELDS or name == tracking_field or name.startswith(SKIPPED_FIELD_PREFIXES):
            continue
        if value is None:
            continue
        if isinstance(value, dict):
            if not value.get("uniqueName"):
                logger.info(f"Dropping {name}: identity {value.get('displayName')!r} has no unique name")
                continue
            value = value["uniqueName"]
        copied[name] = value
    return copied


class WorkItemCopier:
    """
    Copies source work items into the target project.
    """

    def __init__(self, ctx: MigrationContext):
        """
        Initialize the WorkItemCopier.

        Args:
            ctx: The migration context; its state map must already be built
        """
        self.ctx = ctx
        self.source = ctx.source
        self.target = ctx.target
        self.config = ctx.config
        self.attachments = AttachmentMigrator(ctx.source, ctx.target, ctx.target_project_name, ctx.attachment_map)
        self.logger = logging.getLogger(__name__)

    def run(self) -> StepResult:
        result = self.ctx.report.step("work-items")

        self.prefetch_target_map()
        source_items = fetch_project_work_items(self.source, self.ctx.source_project_name)
        self.logger.info(f"Copying {len(source_items)} work items, {len(self.ctx.work_item_map)} already migrated")

        for work_item in source_items:
            source_id = work_item_id(work_item)
            try:
                self.copy_work_item(work_item, result)
            except Exception as e:
                result.warn(f"Failed to copy work item {source_id}: {str(e)}", self._key(source_id))

        self.logger.info(f"Processed {len(source_items)} work items")
        return result

    def _key(self, source_id: int) -> EntityKey:
        return EntityKey(self.ctx.target_project_name, "work item", str(source_id))

    def prefetch_target_map(self):
        """Seed source id -> target URL from every target item that carries the tracking field."""
        tracking_field = self.config.tracking_field
        project = self.ctx.target_project_name
        ids = query_all_ids(self.target, lambda after_id: tracked_items_query(project, tracking_field, after_id))
        for target_item in fetch_work_items(self.target, ids, fields=["System.Id", tracking_field]):
            source_id = (target_item.get("fields") or {}).get(tracking_field)
            if source_id is None:
                continue
            self.ctx.work_item_map[int(source_id)] = target_item["url"]
            self.ctx.target_work_item_ids[int(source_id)] = target_item["id"]
        self.logger.info(f"Found {len(self.ctx.work_item_map)} previously migrated work items in the target")

    def copy_work_item(self, work_item: Dict[str, Any], result: StepResult):
        source_id = work_item_id(work_item)
        key = self._key(source_id)

        if source_id in self.ctx.work_item_map:
            result.record_skipped(key)
            target_id = self.ctx.target_work_item_ids[source_id]
            target_item = None
            if self.config.migrate_attachments:
                existing = self.target.get_work_items([target_id], expand="Relations")
                target_item = existing[0] if existing else None
        else:
            target_item = self.create_work_item(work_item)
            target_id = target_item["id"]
            self.ctx.work_item_map[source_id] = target_item["url"]
            self.ctx.target_work_item_ids[source_id] = target_id
            result.record_created(key)

        if self.config.migrate_attachments:
            self.sync_attachments(work_item, target_id, target_item, result)
        if self.config.migrate_comments:
            self.sync_comments(work_item, target_id, result)

    def build_operations(self, work_item: Dict[str, Any]) -> List[Dict[str, Any]]:
        fields = work_item.get("fields") or {}
        wit_name = fields.get("System.WorkItemType")
        values = copyable_fields(fields, self.config.tracking_field)

        if self.config.rewrite_inline_attachments:
            for name, value in values.items():
                if isinstance(value, str):
                    values[name], _ = self.attachments.rewrite_inline_links(value)

        values["System.AreaPath"] = self.ctx.target_project_name
        values["System.IterationPath"] = self.ctx.target_project_name
        state = self.ctx.state_map.translate(wit_name, fields.get("System.State"))
        if state:
            values["System.State"] = state
        values[self.config.tracking_field] = work_item_id(work_item)

        operations = [{"op": "add", "path": f"/fields/{name}", "value": value} for name, value in values.items()]

        source_parent = parent_id(work_item)
        if source_parent is not None:
            parent_url = self.ctx.work_item_map.get(source_parent)
            if parent_url:
                operations.append({"op": "add", "path": "/relations/-",
                                   "value": {"rel": PARENT_LINK, "url": parent_url}})
            else:
                self.logger.warning(f"Parent {source_parent} of work item {work_item_id(work_item)} is not migrated")
        return operations

    def create_work_item(self, work_item: Dict[str, Any]) -> Dict[str, Any]:
        wit_name = work_item["fields"]["System.WorkItemType"]
        created = self.target.create_work_item(self.ctx.target_project_name, wit_name, self.build_operations(work_item))
        self.logger.info(f"Created {wit_name} {created['id']} from source work item {work_item_id(work_item)}")
        return created

    def sync_attachments(self, work_item: Dict[str, Any], target_id: int, target_item: Optional[Dict[str, Any]],
                         result: StepResult):
        try:
            relations = self.attachments.missing_attachment_relations(work_item, target_item)
        except Exception as e:
            result.warn(f"Failed to copy attachments of work item {work_item_id(work_item)}: {str(e)}",
                        self._key(work_item_id(work_item)))
            return
        if relations:
            self.target.update_work_item(target_id, [{"op": "add", "path": "/relations/-", "value": rel}
                                                     for rel in relations])
            self.logger.info(f"Added {len(relations)} attachments to work item {target_id}")

    @staticmethod
    def comment_marker(comment: Dict[str, Any]) -> str:
        return f"(source comment #{comment['id']})"

    def comment_text(self, comment: Dict[str, Any]) -> str:
        author = (comment.get("createdBy") or {}).get("displayName") or "unknown"
        text = comment.get("text") or ""
        if self.config.rewrite_inline_attachments:
            text, _ = self.attachments.rewrite_inline_links(text)
        return (f"<p><i>Originally commented by {author} on {comment.get('createdDate')} "
                f"{self.comment_marker(comment)}</i></p>{text}")

    def sync_comments(self, work_item: Dict[str, Any], target_id: int, result: StepResult):
        source_id = work_item_id(work_item)
        try:
            source_comments = self.source.get_comments(self.ctx.source_project_name, source_id)
            if not source_comments:
                return
            target_texts = [c.get("text") or "" for c in self.target.get_comments(self.ctx.target_project_name, target_id)]
            added = 0
            for comment in source_comments:
                marker = self.comment_marker(comment)
                if any(marker in text for text in target_texts):
                    continue
                self.target.add_comment(self.ctx.target_project_name, target_id, self.comment_text(comment))
                added += 1
            if added:
                self.logger.info(f"Added {added} comments to work item {target_id}")
        except Exception as e:
            result.warn(f"Failed to copy comments of work item {source_id}: {str(e)}", self._key(source_id))
