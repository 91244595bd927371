"""
Comment author template.

Produces a JSON file listing every distinct author of comments in the source
project, each with blank target credentials, for an operator to fill in.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ado_process_migrator.utils.azure_client import AzureDevOpsClient
from ado_process_migrator.utils.json_utils import save_json_data
from ado_process_migrator.work_items.queries import project_work_item_ids

DEFAULT_USER = "@default_user"

logger = logging.getLogger(__name__)


def author_identity(comment: Dict[str, Any]) -> str:
    created_by = comment.get("createdBy") or {}
    return created_by.get("uniqueName") or created_by.get("displayName") or ""


def distinct_authors(comments: Iterable[Dict[str, Any]]) -> List[str]:
    """Authors in first-seen order."""
    authors = []
    for comment in comments:
        identity = author_identity(comment)
        if identity and identity not in authors:
            authors.append(identity)
    return authors


def build_author_template(authors: Iterable[str]) -> Dict[str, Dict[str, str]]:
    template = {author: {"targetEmail": "", "targetPat": ""} for author in authors if author != DEFAULT_USER}
    template[DEFAULT_USER] = {"targetEmail": "", "targetPat": ""}
    return template


def collect_comment_authors(client: AzureDevOpsClient, project: str) -> List[str]:
    ids = project_work_item_ids(client, project)
    logger.info(f"Collecting comment authors from {len(ids)} work items in '{project}'")
    comments = []
    for work_item_id in ids:
        try:
            comments.extend(client.get_comments(project, work_item_id))
        except Exception as e:
            logger.warning(f"Could not read comments of work item {work_item_id}: {str(e)}")
    return distinct_authors(comments)


def export_comment_authors(client: AzureDevOpsClient, project: str, filename: str = "comment_authors.json",
                           base_path: str = "output") -> Path:
    template = build_author_template(collect_comment_authors(client, project))
    file_path = save_json_data(template, filename, base_path=base_path)
    logger.info(f"Wrote {len(template) - 1} comment authors to {file_path}")
    return file_path
