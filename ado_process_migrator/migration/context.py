import logging
from typing import Any, Dict, List, Optional, Tuple

from ado_process_migrator.config.config import MigrationConfig
from ado_process_migrator.migration.report import MigrationReport
from ado_process_migrator.migration.state_mapping import StateMap
from ado_process_migrator.utils.azure_client import AzureDevOpsClient


class MigrationContext:
    """
    State shared by the steps of one migration run.

    Steps resolve the source/target processes and WIT pairs into here; the
    work item pass reads the state map built by the state step and owns the
    work item and attachment maps.
    """

    def __init__(self, config: MigrationConfig, source: AzureDevOpsClient, target: AzureDevOpsClient,
                 report: Optional[MigrationReport] = None):
        self.config = config
        self.source = source
        self.target = target
        self.report = report or MigrationReport(
            source_organization=config.source_organization,
            target_organization=config.target_organization,
            source_project=config.source_project,
            target_project=config.effective_target_project,
        )
        self.logger = logging.getLogger(__name__)

        self.source_project: Optional[Dict[str, Any]] = None
        self.target_project: Optional[Dict[str, Any]] = None
        self.source_process: Optional[Dict[str, Any]] = None
        self.target_process: Optional[Dict[str, Any]] = None
        self.wit_pairs: List[Tuple[Dict[str, Any], Dict[str, Any]]] = []

        self.state_map = StateMap()
        self.picklist_ids: Dict[str, str] = {}
        self.work_item_map: Dict[int, str] = {}
        self.target_work_item_ids: Dict[int, int] = {}
        self.attachment_map: Dict[str, str] = {}

    @property
    def source_project_name(self) -> str:
        return self.config.source_project

    @property
    def target_project_name(self) -> str:
        return self.config.effective_target_project

    @property
    def source_process_id(self) -> Optional[str]:
        return self.source_process.get("typeId") if self.source_process else None

    @property
    def target_process_id(self) -> Optional[str]:
        return self.target_process.get("typeId") if self.target_process else None

    @property
    def process_name(self) -> str:
        return self.source_process.get("name", "") if self.source_process else ""

    def target_wit_for(self, source_wit_name: str) -> Optional[Dict[str, Any]]:
        for source_wit, target_wit in self.wit_pairs:
            if source_wit.get("name") == source_wit_name:
                return target_wit
        return None
