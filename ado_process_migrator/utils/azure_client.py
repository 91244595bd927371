from azure.devops.connection import Connection
from azure.devops.v7_1.work_item_tracking.models import CommentCreate, JsonPatchOperation, Wiql
from msrest.authentication import BasicAuthentication
import io
import logging
import requests
from typing import List, Dict, Any, Optional, Callable
import time

from ado_process_migrator.config.config import MigrationConfig


class AzureDevOpsApiError(Exception):
    """Raised when the Azure DevOps REST API answers with an error status."""

    def __init__(self, status_code: int, message: str, url: str = ""):
        super().__init__(f"HTTP {status_code} for {url}: {message}")
        self.status_code = status_code
        self.message = message
        self.url = url

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_transient(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


def is_transient_error(error: Exception) -> bool:
    if isinstance(error, AzureDevOpsApiError):
        return error.is_transient
    return isinstance(error, (requests.ConnectionError, requests.Timeout))


def retry(func, *args, retries=3, delay=2, backoff=2, retry_on: Callable[[Exception], bool] = is_transient_error, **kwargs):
    """
    Retry a function with exponential backoff

    Args:
        func: The function to retry
        args: Positional arguments to pass to the function
        retries: Number of times to retry before giving up
        delay: Initial delay between retries in seconds
        backoff: Backoff multiplier e.g. value of 2 will double the delay each retry
        retry_on: Predicate deciding whether an exception is worth retrying
        kwargs: Keyword arguments to pass to the function

    Returns:
        The return value of the function

    Raises:
        The last exception raised by the function
    """
    logger = logging.getLogger(__name__)
    name = getattr(func, "__name__", repr(func))
    current_delay = delay

    for retry_count in range(retries + 1):  # +1 because we want to try once, then retry 'retries' times
        try:
            if retry_count > 0:
                logger.warning(f"Retry attempt {retry_count}/{retries} for {name}")
            return func(*args, **kwargs)
        except Exception as e:
            if not retry_on(e):
                raise
            if retry_count < retries:  # No need to sleep after the last retry
                logger.warning(f"Exception during {name}: {str(e)}. Retrying in {current_delay}s...")
                time.sleep(current_delay)
                current_delay *= backoff  # Exponential backoff
            else:
                logger.error(f"All {retries} retries failed for {name}: {str(e)}")
                raise


class AzureDevOpsClient:
    """
    Client for one Azure DevOps organization.

    Process customization, fields, picklists and projects go through the REST
    API directly; the work item plane uses the azure-devops SDK clients.
    Every REST call returns decoded JSON (camelCase keys, as sent by the service).
    """

    CONTINUATION_HEADER = "x-ms-continuationtoken"
    COMMENTS_PAGE_SIZE = 200

    def __init__(self, organization: str, personal_access_token: str, api_version: str = "7.1",
                 base_url: str = "https://dev.azure.com", retries: int = 3, retry_delay: float = 2):
        self.organization = organization
        self.personal_access_token = personal_access_token
        self.api_version = api_version
        self.base_url = base_url.rstrip('/')
        self.retries = retries
        self.retry_delay = retry_delay
        self._session = None
        self._connection = None
        self._work_item_client = None
        self.logger = logging.getLogger(__name__)

    @classmethod
    def source_from_config(cls, config: MigrationConfig) -> "AzureDevOpsClient":
        return cls(config.source_organization, config.source_pat, api_version=config.api_version,
                   base_url=config.base_url, retries=config.max_retries, retry_delay=config.retry_delay)

    @classmethod
    def target_from_config(cls, config: MigrationConfig) -> "AzureDevOpsClient":
        return cls(config.target_organization, config.target_pat, api_version=config.api_version,
                   base_url=config.base_url, retries=config.max_retries, retry_delay=config.retry_delay)

    @property
    def organization_url(self) -> str:
        return f"{self.base_url}/{self.organization}"

    @property
    def credentials(self) -> BasicAuthentication:
        return BasicAuthentication('', self.personal_access_token)

    @property
    def session(self) -> requests.Session:
        if not self._session:
            masked_pat = self.personal_access_token[:4] + "..." if self.personal_access_token else "None"
            self.logger.info(f"Opening REST session for {self.organization_url} (PAT: {masked_pat})")
            self._session = self.credentials.signed_session()
        return self._session

    @property
    def connection(self):
        if not self._connection:
            self.logger.info(f"Connecting to Azure DevOps organization: {self.organization_url}")
            try:
                self._connection = Connection(
                    base_url=self.organization_url,
                    creds=self.credentials
                )
            except Exception as e:
                self.logger.error(f"Failed to connect to Azure DevOps: {str(e)}")
                raise
        return self._connection

    @property
    def work_item_client(self):
        if not self._work_item_client:
            self.logger.info("Initializing Azure DevOps Work Item Client")
            self._work_item_client = self.connection.clients_v7_1.get_work_item_tracking_client()
        return self._work_item_client

    # REST plumbing

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.organization_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
              json: Any = None, api_version: Optional[str] = None) -> requests.Response:
        url = self._url(path)
        query = {"api-version": api_version or self.api_version}
        if params:
            query.update(params)

        def _call():
            self.logger.debug(f"{method} {url} {query}")
            response = self.session.request(method, url, params=query, json=json)
            if response.status_code >= 400:
                try:
                    message = response.json().get("message", response.text)
                except ValueError:
                    message = response.text
                raise AzureDevOpsApiError(response.status_code, message, url)
            return response

        _call.__name__ = f"{method} {path}"
        return retry(_call, retries=self.retries, delay=self.retry_delay)

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json: Any = None, api_version: Optional[str] = None) -> Dict[str, Any]:
        response = self._send(method, path, params=params, json=json, api_version=api_version)
        if not response.content:
            return {}
        return response.json()

    def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """GET a collection, following continuation tokens until exhausted."""
        query = dict(params or {})
        items = []
        while True:
            response = self._send("GET", path, params=query)
            data = response.json() if response.content else {}
            items.extend(data.get("value", []))
            token = response.headers.get(self.CONTINUATION_HEADER)
            if not token:
                return items
            query["continuationToken"] = token

    # Projects

    def get_projects(self, state_filter: str = "All") -> List[Dict[str, Any]]:
        return self._get_list("_apis/projects", params={"stateFilter": state_filter})

    def get_project(self, project_id: str, include_capabilities: bool = True) -> Dict[str, Any]:
        return self._request("GET", f"_apis/projects/{project_id}",
                             params={"includeCapabilities": str(include_capabilities).lower()})

    def create_project(self, project: Dict[str, Any]) -> Dict[str, Any]:
        """Queue project creation. Returns an operation reference."""
        return self._request("POST", "_apis/projects", json=project)

    def update_project(self, project_id: str, project: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"_apis/projects/{project_id}", json=project)

    def get_operation(self, operation_id: str) -> Dict[str, Any]:
        return self._request("GET", f"_apis/operations/{operation_id}")

    def wait_for_operation(self, operation: Dict[str, Any], timeout: float = 300, poll_interval: float = 2) -> Dict[str, Any]:
        """Poll a queued operation until it leaves the queued/inProgress states."""
        deadline = time.monotonic() + timeout
        current = operation
        while current.get("status") in ("notSet", "queued", "inProgress"):
            if time.monotonic() > deadline:
                raise TimeoutError(f"Operation {operation.get('id')} did not finish within {timeout}s")
            time.sleep(poll_interval)
            current = self.get_operation(operation["id"])
        if current.get("status") != "succeeded":
            raise AzureDevOpsApiError(500, f"Operation {operation.get('id')} ended with status {current.get('status')}: "
                                           f"{current.get('resultMessage', '')}")
        return current

    # Processes

    def get_processes(self) -> List[Dict[str, Any]]:
        return self._get_list("_apis/work/processes")

    def get_process(self, process_type_id: str) -> Dict[str, Any]:
        return self._request("GET", f"_apis/work/processes/{process_type_id}")

    def create_process(self, process: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "_apis/work/processes", json=process)

    # Organization fields

    def get_fields(self) -> List[Dict[str, Any]]:
        return self._get_list("_apis/wit/fields")

    def create_field(self, field: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "_apis/wit/fields", json=field)

    # Work item types

    def get_work_item_types(self, process_id: str) -> List[Dict[str, Any]]:
        return self._get_list(f"_apis/work/processes/{process_id}/workitemtypes")

    def create_work_item_type(self, process_id: str, work_item_type: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes", json=work_item_type)

    def get_work_item_type_fields(self, process_id: str, wit_ref_name: str) -> List[Dict[str, Any]]:
        return self._get_list(f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/fields")

    def get_work_item_type_field(self, process_id: str, wit_ref_name: str, field_ref_name: str,
                                 expand: str = "all") -> Dict[str, Any]:
        return self._request("GET", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/fields/{field_ref_name}",
                             params={"$expand": expand})

    def add_work_item_type_field(self, process_id: str, wit_ref_name: str, field: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/fields", json=field)

    # Behaviors

    def get_behaviors(self, process_id: str, expand: str = "fields") -> List[Dict[str, Any]]:
        return self._get_list(f"_apis/work/processes/{process_id}/behaviors", params={"$expand": expand})

    def create_behavior(self, process_id: str, behavior: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/behaviors", json=behavior)

    # Picklists

    def get_picklists(self) -> List[Dict[str, Any]]:
        return self._get_list("_apis/work/processes/lists")

    def get_picklist(self, list_id: str) -> Dict[str, Any]:
        return self._request("GET", f"_apis/work/processes/lists/{list_id}")

    def create_picklist(self, picklist: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "_apis/work/processes/lists", json=picklist)

    # States

    def get_states(self, process_id: str, wit_ref_name: str) -> List[Dict[str, Any]]:
        return self._get_list(f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/states")

    def create_state(self, process_id: str, wit_ref_name: str, state: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/states", json=state)

    def hide_state(self, process_id: str, wit_ref_name: str, state_id: str) -> Dict[str, Any]:
        return self._request("PUT", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/states/{state_id}",
                             json={"hidden": True})

    # Rules

    def get_rules(self, process_id: str, wit_ref_name: str) -> List[Dict[str, Any]]:
        return self._get_list(f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/rules")

    def create_rule(self, process_id: str, wit_ref_name: str, rule: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/rules", json=rule)

    # Layout

    def get_layout(self, process_id: str, wit_ref_name: str) -> Dict[str, Any]:
        return self._request("GET", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/layout")

    def add_page(self, process_id: str, wit_ref_name: str, page: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/layout/pages", json=page)

    def update_page(self, process_id: str, wit_ref_name: str, page: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}/layout/pages", json=page)

    def add_section(self, process_id: str, wit_ref_name: str, page: Dict[str, Any], section: Dict[str, Any]) -> Dict[str, Any]:
        """Sections have no endpoint of their own; they are written through the owning page."""
        sections = list(page.get("sections") or []) + [section]
        return self.update_page(process_id, wit_ref_name, {"id": page["id"], "sections": sections})

    def add_group(self, process_id: str, wit_ref_name: str, page_id: str, section_id: str,
                  group: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}"
                                     f"/layout/pages/{page_id}/sections/{section_id}/groups", json=group)

    def add_control(self, process_id: str, wit_ref_name: str, group_id: str, control: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"_apis/work/processes/{process_id}/workitemtypes/{wit_ref_name}"
                                     f"/layout/groups/{group_id}/controls", json=control)

    # Work items (SDK)

    @staticmethod
    def _work_item_to_dict(work_item) -> Dict[str, Any]:
        return {
            "id": work_item.id,
            "rev": work_item.rev,
            "url": work_item.url,
            "fields": dict(work_item.fields or {}),
            "relations": [
                {"rel": relation.rel, "url": relation.url, "attributes": dict(relation.attributes or {})}
                for relation in (work_item.relations or [])
            ],
        }

    def query_work_item_ids(self, query: str, top: Optional[int] = None) -> List[int]:
        result = retry(self.work_item_client.query_by_wiql, Wiql(query=query), top=top,
                       retries=self.retries, delay=self.retry_delay)
        return [reference.id for reference in (result.work_items or [])]

    def get_work_items(self, ids: List[int], fields: Optional[List[str]] = None,
                       expand: Optional[str] = None) -> List[Dict[str, Any]]:
        if not ids:
            return []
        work_items = retry(self.work_item_client.get_work_items, ids, fields=fields, expand=expand,
                           error_policy="omit", retries=self.retries, delay=self.retry_delay)
        return [self._work_item_to_dict(wi) for wi in work_items if wi is not None]

    def create_work_item(self, project: str, work_item_type: str, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        document = [JsonPatchOperation(op=op["op"], path=op["path"], value=op.get("value")) for op in operations]
        created = self.work_item_client.create_work_item(document, project, work_item_type)
        return self._work_item_to_dict(created)

    def update_work_item(self, work_item_id: int, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        document = [JsonPatchOperation(op=op["op"], path=op["path"], value=op.get("value")) for op in operations]
        updated = self.work_item_client.update_work_item(document, work_item_id)
        return self._work_item_to_dict(updated)

    def get_comments(self, project: str, work_item_id: int) -> List[Dict[str, Any]]:
        comments = []
        continuation_token = None
        while True:
            page = retry(self.work_item_client.get_comments, project, work_item_id, top=self.COMMENTS_PAGE_SIZE,
                         continuation_token=continuation_token, order="asc",
                         retries=self.retries, delay=self.retry_delay)
            for comment in page.comments or []:
                created_by = comment.created_by
                comments.append({
                    "id": comment.id,
                    "text": comment.text or "",
                    "createdDate": comment.created_date.isoformat() if comment.created_date else None,
                    "createdBy": {
                        "displayName": created_by.display_name if created_by else None,
                        "uniqueName": created_by.unique_name if created_by else None,
                    },
                })
            continuation_token = page.continuation_token
            if not continuation_token:
                return comments

    def add_comment(self, project: str, work_item_id: int, text: str) -> Dict[str, Any]:
        comment = self.work_item_client.add_comment(CommentCreate(text=text), project, work_item_id)
        return {"id": comment.id, "text": comment.text}

    def download_attachment(self, url: str) -> bytes:
        response = self._send("GET", url, params={"download": "true"})
        return response.content

    def upload_attachment(self, project: str, file_name: str, content: bytes) -> Dict[str, Any]:
        reference = self.work_item_client.create_attachment(io.BytesIO(content), project=project, file_name=file_name)
        return {"id": reference.id, "url": reference.url}
