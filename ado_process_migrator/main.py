import argparse
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler

from ado_process_migrator.config.config import MigrationConfig
from ado_process_migrator.migration.orchestrator import MigrationOrchestrator
from ado_process_migrator.utils.json_utils import save_json_data


def setup_logging(debug: bool = False, logs_dir: str = "logs"):
    # Create logs directory if it doesn't exist
    os.makedirs(logs_dir, exist_ok=True)

    # Generate timestamp for log filename
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(logs_dir, f"migration_{timestamp}.log")
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # File handler with rotation (100 MB per file)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=100 * 1024 * 1024,  # 100 MB
        backupCount=10
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # The SDK and urllib3 are chatty at INFO
    logging.getLogger("msrest").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return log_file


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Migrate an Azure DevOps inherited process and project content '
                                                 'to another organization')
    parser.add_argument('--source-org', help='Source organization (overrides SOURCE_ORGANIZATION)')
    parser.add_argument('--target-org', help='Target organization (overrides TARGET_ORGANIZATION)')
    parser.add_argument('--source-project', help='Source project name (overrides SOURCE_PROJECT)')
    parser.add_argument('--target-project', help='Target project name (overrides TARGET_PROJECT)')
    parser.add_argument('--api-version', help='REST api-version (overrides API_VERSION)')
    parser.add_argument('--no-process', action='store_true', help='Skip process template and project migration')
    parser.add_argument('--work-items', action='store_true', help='Migrate work items')
    parser.add_argument('--report', help='Write the run report to this JSON file name under output/')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser.parse_args(argv)


def build_config(args) -> MigrationConfig:
    overrides = {
        "source_organization": args.source_org,
        "target_organization": args.target_org,
        "source_project": args.source_project,
        "target_project": args.target_project,
        "api_version": args.api_version,
    }
    overrides = {key: value for key, value in overrides.items() if value}
    if args.no_process:
        overrides["migration_process"] = False
    if args.work_items:
        overrides["migration_work_items"] = True
    return MigrationConfig(**overrides)


def main(argv=None) -> int:
    args = parse_args(argv)
    log_file = setup_logging(debug=args.debug)
    logger = logging.getLogger(__name__)
    logger.info("Starting Azure DevOps process migration")
    logger.info(f"Logs will be saved to: {log_file}")

    try:
        config = build_config(args)
        report = MigrationOrchestrator(config).run()
    except Exception as e:
        logger.error(f"Error during migration: {str(e)}", exc_info=True)
        return 1

    if args.report:
        path = save_json_data(report.to_json_dict(), args.report)
        logger.info(f"Run report saved to: {path}")

    if report.stopped:
        logger.error(f"Migration stopped: {report.stopped}")
        return 1
    if report.has_warnings:
        logger.warning(f"Migration finished with {len(report.warnings)} warnings")
    else:
        logger.info("Migration completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
