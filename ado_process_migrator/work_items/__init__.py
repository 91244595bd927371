"""
Work Items module for the Azure DevOps process migrator.

This module contains the components that copy work items, their
attachments and comments from the source project to the target project.
"""

from ado_process_migrator.work_items.attachments import AttachmentMigrator
from ado_process_migrator.work_items.comment_authors import export_comment_authors
from ado_process_migrator.work_items.work_item_copier import WorkItemCopier

__all__ = [
    'AttachmentMigrator',
    'WorkItemCopier',
    'export_comment_authors',
]
