#!/usr/bin/env python3
"""
Script to copy only the work items of a project whose process was already migrated.

Equivalent to running the main entry point with MIGRATION_PROCESS=false and
MIGRATION_WORK_ITEMS=true: the processes are resolved read-only, the state
map is built, and then the work item pass runs.

Usage:
    python migrate_work_items.py [--no-comments] [--no-attachments]
"""

import argparse
import logging
import os
import sys

# Add the project root to the Python path
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
sys.path.append(project_root)

from ado_process_migrator.config.config import MigrationConfig
from ado_process_migrator.main import setup_logging
from ado_process_migrator.migration.orchestrator import MigrationOrchestrator


def main():
    log_file = setup_logging(logs_dir=os.path.join(project_root, "logs"))
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description='Copy work items between Azure DevOps projects')
    parser.add_argument('--no-comments', action='store_true', help='Do not copy comments')
    parser.add_argument('--no-attachments', action='store_true', help='Do not copy attachments')
    args = parser.parse_args()

    logger.info(f"Logs will be saved to: {log_file}")
    config = MigrationConfig(
        migration_process=False,
        migration_work_items=True,
        migrate_comments=not args.no_comments,
        migrate_attachments=not args.no_attachments,
    )

    report = MigrationOrchestrator(config).run()
    if report.stopped:
        sys.exit(1)


if __name__ == "__main__":
    main()
