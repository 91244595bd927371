"""
Attachment copying for migrated work items.

Covers both attachments linked as ``AttachedFile`` relations and attachment
URLs embedded in HTML fields and comments (pasted images and the like).
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urlparse

from ado_process_migrator.utils.azure_client import AzureDevOpsClient

ATTACHED_FILE = "AttachedFile"
ATTACHMENT_URL_PATTERN = re.compile(
    r"""https?://[^\s"'<>]+?/_apis/wit/attachments/(?P<guid>[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})[^\s"'<>]*"""
)


def attachment_guid(url: str) -> Optional[str]:
    match = ATTACHMENT_URL_PATTERN.search(url or "")
    return match.group("guid").lower() if match else None


def attachment_file_name(url: str, default: str = "attachment") -> str:
    query = parse_qs(urlparse(url.replace("&amp;", "&")).query)
    names = query.get("fileName") or query.get("filename")
    return names[0] if names else default


def attached_files(work_item: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [rel for rel in work_item.get("relations") or [] if rel.get("rel") == ATTACHED_FILE]


class AttachmentMigrator:
    """Copies attachments from the source organization to the target project, once per source GUID."""

    def __init__(self, source: AzureDevOpsClient, target: AzureDevOpsClient, target_project: str,
                 attachment_map: Dict[str, str]):
        self.source = source
        self.target = target
        self.target_project = target_project
        self.attachment_map = attachment_map
        self.logger = logging.getLogger(__name__)

    def is_source_url(self, url: str) -> bool:
        """dev.azure.com/<org>/... or the legacy <org>.visualstudio.com host."""
        parsed = urlparse(url or "")
        organization = self.source.organization.lower()
        first_segment = parsed.path.lstrip("/").split("/", 1)[0].lower()
        return first_segment == organization or parsed.netloc.lower().startswith(f"{organization}.")

    def copy_attachment(self, url: str, file_name: str) -> str:
        """Download an attachment from the source and upload it to the target; returns the target URL."""
        guid = attachment_guid(url) or url
        if guid in self.attachment_map:
            return self.attachment_map[guid]

        self.logger.info(f"Copying attachment {file_name} ({guid})")
        content = self.source.download_attachment(url.replace("&amp;", "&"))
        uploaded = self.target.upload_attachment(self.target_project, file_name, content)
        self.attachment_map[guid] = uploaded["url"]
        return uploaded["url"]

    def rewrite_inline_links(self, html: str) -> Tuple[str, int]:
        """Replace source attachment URLs inside ``html`` with copies in the target. Returns (html, replaced)."""
        if not html or "/_apis/wit/attachments/" not in html:
            return html, 0

        replaced = 0

        def _replace(match):
            nonlocal replaced
            url = match.group(0)
            if not self.is_source_url(url):
                return url
            file_name = attachment_file_name(url, default=match.group("guid"))
            try:
                new_url = self.copy_attachment(url, file_name)
            except Exception as e:
                self.logger.warning(f"Could not copy inline attachment {url}: {str(e)}")
                return url
            replaced += 1
            return f"{new_url}?fileName={quote(file_name)}"

        return ATTACHMENT_URL_PATTERN.sub(_replace, html), replaced

    def missing_attachment_relations(self, source_item: Dict[str, Any],
                                     target_item: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Copy source ``AttachedFile`` relations the target item does not have yet
        (matched by file name) and return the relations to add.
        """
        existing_names = {(rel.get("attributes") or {}).get("name")
                          for rel in attached_files(target_item or {})}
        relations = []
        for rel in attached_files(source_item):
            attributes = rel.get("attributes") or {}
            name = attributes.get("name") or attachment_file_name(rel.get("url", ""))
            if name in existing_names:
                continue
            new_url = self.copy_attachment(rel["url"], name)
            relation = {"rel": ATTACHED_FILE, "url": new_url, "attributes": {"name": name}}
            if attributes.get("comment"):
                relation["attributes"]["comment"] = attributes["comment"]
            relations.append(relation)
            existing_names.add(name)
        return relations
