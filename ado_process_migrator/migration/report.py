"""
Run report for a migration.

Every reconciliation step records what it created, updated or skipped and
the warnings it swallowed, so a caller can tell "nothing to do" apart from
"partial failure" without reading the logs.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ado_process_migrator.migration.matching import EntityKey

logger = logging.getLogger(__name__)


class MigrationWarning(BaseModel):
    step: str
    message: str
    entity: Optional[EntityKey] = None


class StepResult(BaseModel):
    step: str
    created: List[EntityKey] = Field(default_factory=list)
    updated: List[EntityKey] = Field(default_factory=list)
    skipped: List[EntityKey] = Field(default_factory=list)
    warnings: List[MigrationWarning] = Field(default_factory=list)

    def record_created(self, key: EntityKey):
        logger.info(f"[{self.step}] Created {key}")
        self.created.append(key)

    def record_updated(self, key: EntityKey):
        logger.info(f"[{self.step}] Updated {key}")
        self.updated.append(key)

    def record_skipped(self, key: EntityKey):
        logger.debug(f"[{self.step}] {key} already exists, skipping")
        self.skipped.append(key)

    def warn(self, message: str, entity: Optional[EntityKey] = None):
        logger.warning(f"[{self.step}] {message}")
        self.warnings.append(MigrationWarning(step=self.step, message=message, entity=entity))

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def nothing_to_do(self) -> bool:
        return not (self.created or self.updated or self.warnings)


class MigrationReport(BaseModel):
    source_organization: str
    target_organization: str
    source_project: str
    target_project: str
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    stopped: Optional[str] = None
    steps: List[StepResult] = Field(default_factory=list)

    def step(self, name: str) -> StepResult:
        result = StepResult(step=name)
        self.steps.append(result)
        return result

    def get_step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.step == name:
                return result
        return None

    def stop(self, reason: str):
        logger.error(f"Migration stopped: {reason}")
        self.stopped = reason

    @property
    def warnings(self) -> List[MigrationWarning]:
        return [warning for result in self.steps for warning in result.warnings]

    @property
    def has_warnings(self) -> bool:
        return any(result.has_warnings for result in self.steps)

    @property
    def created(self) -> List[EntityKey]:
        return [key for result in self.steps for key in result.created]

    def summary_lines(self) -> List[str]:
        lines = []
        for result in self.steps:
            lines.append(f"{result.step}: {len(result.created)} created, {len(result.updated)} updated, "
                         f"{len(result.skipped)} skipped, {len(result.warnings)} warnings")
        if self.stopped:
            lines.append(f"stopped: {self.stopped}")
        return lines

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json")
