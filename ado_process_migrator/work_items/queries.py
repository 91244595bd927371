"""WIQL helpers shared by the work item pass and the comment author export."""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from ado_process_migrator.utils.azure_client import AzureDevOpsClient

# Work items batch API limit
BATCH_SIZE = 200

# WIQL refuses result sets above 20,000 items, so ids are read in pages below that
WIQL_PAGE_SIZE = 10000

logger = logging.getLogger(__name__)


def wiql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def project_items_query(project: str, after_id: int = 0) -> str:
    return (f"SELECT [System.Id] FROM WorkItems "
            f"WHERE [System.TeamProject] = {wiql_literal(project)} "
            f"AND [System.Id] > {int(after_id)} "
            f"ORDER BY [System.Id] ASC")


def tracked_items_query(project: str, tracking_field: str, after_id: int = 0) -> str:
    return (f"SELECT [System.Id], [{tracking_field}] FROM WorkItems "
            f"WHERE [System.TeamProject] = {wiql_literal(project)} "
            f"AND [{tracking_field}] > 0 "
            f"AND [System.Id] > {int(after_id)} "
            f"ORDER BY [System.Id] ASC")


def query_all_ids(client: AzureDevOpsClient, build_query: Callable[[int], str],
                  page_size: Optional[int] = None) -> List[int]:
    """
    Run a WIQL id query page by page.

    Args:
        client: Organization to query
        build_query: Returns the query for the ids above the given id, ordered ascending
        page_size: Ids per page, defaults to WIQL_PAGE_SIZE

    Returns:
        Every matching id
    """
    page_size = page_size or WIQL_PAGE_SIZE
    ids = []
    last_id = 0
    while True:
        page = client.query_work_item_ids(build_query(last_id), top=page_size)
        ids.extend(page)
        if len(page) < page_size:
            return ids
        last_id = max(page)
        logger.debug(f"Read {len(ids)} work item ids from {client.organization}, continuing after {last_id}")


def chunked(items: List[Any], size: int = BATCH_SIZE) -> Iterator[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def fetch_work_items(client: AzureDevOpsClient, ids: List[int], fields: Optional[List[str]] = None,
                     expand: Optional[str] = None) -> List[Dict[str, Any]]:
    """Read work items in batches of 200 (API limit)."""
    results = []
    total_batches = (len(ids) + BATCH_SIZE - 1) // BATCH_SIZE
    for batch_num, batch in enumerate(chunked(ids), start=1):
        logger.info(f"Reading batch {batch_num}/{total_batches} with {len(batch)} work items from {client.organization}")
        results.extend(client.get_work_items(batch, fields=fields, expand=expand))
    return results


def work_item_id(work_item: Dict[str, Any]) -> int:
    return int((work_item.get("fields") or {}).get("System.Id", work_item.get("id")))


def project_work_item_ids(client: AzureDevOpsClient, project: str) -> List[int]:
    """Ids of every work item in a project, ascending."""
    ids = query_all_ids(client, lambda after_id: project_items_query(project, after_id))
    logger.info(f"Found {len(ids)} work items in project '{project}'")
    return sorted(ids)


def fetch_project_work_items(client: AzureDevOpsClient, project: str, expand: Optional[str] = "Relations") -> List[Dict[str, Any]]:
    """All work items of a project, sorted ascending by numeric System.Id."""
    ids = project_work_item_ids(client, project)
    return sorted(fetch_work_items(client, ids, expand=expand), key=work_item_id)
