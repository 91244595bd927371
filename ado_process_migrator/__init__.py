"""Migrate an Azure DevOps inherited process and its project content between organizations."""

__version__ = "0.1.0"
