from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv, find_dotenv

# Try to find the .env file in various locations
dotenv_path = find_dotenv(usecwd=True)
if dotenv_path:
    load_dotenv(dotenv_path)


class MigrationConfig(BaseSettings):
    source_organization: str = Field(..., description="Source Azure DevOps organization name")
    target_organization: str = Field(..., description="Target Azure DevOps organization name")
    source_pat: str = Field(..., description="PAT for the source organization")
    target_pat: str = Field(..., description="PAT for the target organization")
    source_project: str = Field(..., description="Project to migrate from")
    target_project: Optional[str] = Field(None, description="Project to migrate into (defaults to source project)")

    api_version: str = Field("7.1", description="Azure DevOps REST api-version")
    base_url: str = Field("https://dev.azure.com", description="Azure DevOps services root URL")

    # Migration.Process / Migration.WorkItems
    migration_process: bool = Field(True, description="Migrate process template content and project")
    migration_work_items: bool = Field(False, description="Migrate work items")

    migrate_attachments: bool = Field(True, description="Copy work item attachments")
    migrate_comments: bool = Field(True, description="Copy work item comments")
    rewrite_inline_attachments: bool = Field(True, description="Rewrite inline attachment links in HTML")

    tracking_field: str = Field("Custom.SourceWorkitemId", description="Field holding the source work item id")
    target_project_visibility: str = Field("private", description="Visibility for a newly created target project")
    target_version_control: str = Field("Git", description="Version control type for a newly created target project")

    max_retries: int = Field(3, description="Retries for transient REST failures")
    retry_delay: float = Field(2, description="Initial retry delay in seconds")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def effective_target_project(self) -> str:
        return self.target_project or self.source_project
