import logging
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from ado_process_migrator import main as cli
from ado_process_migrator.migration.report import MigrationReport
from ado_process_migrator.utils.json_utils import load_json_data

REQUIRED_ENV = {
    "SOURCE_ORGANIZATION": "contoso-src",
    "TARGET_ORGANIZATION": "contoso-new",
    "SOURCE_PAT": "source-token",
    "TARGET_PAT": "target-token",
    "SOURCE_PROJECT": "Sample",
}


@patch.dict(os.environ, REQUIRED_ENV, clear=True)
class TestMain(unittest.TestCase):

    def setUp(self):
        self.work_dir = tempfile.mkdtemp()
        self.previous_dir = os.getcwd()
        os.chdir(self.work_dir)
        self.root_handlers = list(logging.getLogger().handlers)
        self.root_level = logging.getLogger().level

    def tearDown(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            if handler not in self.root_handlers:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(self.root_level)
        os.chdir(self.previous_dir)
        shutil.rmtree(self.work_dir)

    def make_report(self):
        return MigrationReport(source_organization="contoso-src", target_organization="contoso-new",
                               source_project="Sample", target_project="Sample")

    @patch('ado_process_migrator.main.MigrationOrchestrator')
    def test_successful_run(self, mock_orchestrator):
        mock_orchestrator.return_value.run.return_value = self.make_report()

        self.assertEqual(cli.main(["--report", "report.json"]), 0)

        config = mock_orchestrator.call_args[0][0]
        self.assertEqual(config.source_project, "Sample")
        data = load_json_data(os.path.join("output", "report.json"))
        self.assertEqual(data["target_organization"], "contoso-new")
        self.assertTrue(os.listdir("logs"))

    @patch('ado_process_migrator.main.MigrationOrchestrator')
    def test_stopped_run_exits_with_error(self, mock_orchestrator):
        report = self.make_report()
        report.stop("source project 'Sample' not found")
        mock_orchestrator.return_value.run.return_value = report

        self.assertEqual(cli.main([]), 1)

    @patch('ado_process_migrator.main.MigrationOrchestrator')
    def test_warnings_do_not_fail_the_run(self, mock_orchestrator):
        report = self.make_report()
        report.step("picklists").warn("Skipping picklist with empty id or name")
        mock_orchestrator.return_value.run.return_value = report

        self.assertEqual(cli.main([]), 0)

    @patch('ado_process_migrator.main.MigrationOrchestrator', side_effect=RuntimeError("no network"))
    def test_unexpected_error(self, mock_orchestrator):
        self.assertEqual(cli.main(["--debug"]), 1)


if __name__ == '__main__':
    unittest.main()
