#!/usr/bin/env python
"""
Script to write the comment author template for the source project.

The output maps each distinct comment author to blank target email/PAT
fields, plus a trailing @default_user entry, ready for manual editing.
"""
import os
import sys
import logging
import argparse

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ado_process_migrator.config.config import MigrationConfig
from ado_process_migrator.utils.azure_client import AzureDevOpsClient
from ado_process_migrator.work_items.comment_authors import export_comment_authors

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('comment_authors.log')
    ]
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description='Export the distinct comment authors of the source project')
    parser.add_argument('--output', default='comment_authors.json', help='Output file name')
    parser.add_argument('--output-dir', default='output', help='Output directory')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = MigrationConfig()
    logger.info(f"Using project: {config.source_project} in {config.source_organization}")

    try:
        client = AzureDevOpsClient.source_from_config(config)
        path = export_comment_authors(client, config.source_project, filename=args.output, base_path=args.output_dir)
        logger.info(f"Comment author template written to: {path}")
    except Exception as e:
        logger.error(f"Error exporting comment authors: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
