import unittest
from datetime import datetime
from unittest.mock import MagicMock, patch

import requests

from ado_process_migrator.utils.azure_client import (
    AzureDevOpsApiError,
    AzureDevOpsClient,
    is_transient_error,
    retry,
)


def make_response(status_code=200, payload=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload if payload is not None else {}
    return response


class TestRetry(unittest.TestCase):

    @patch('ado_process_migrator.utils.azure_client.time.sleep')
    def test_transient_errors_are_retried(self, mock_sleep):
        func = MagicMock(side_effect=[AzureDevOpsApiError(503, "busy"), requests.ConnectionError("reset"), "ok"])

        self.assertEqual(retry(func, "a", retries=3, delay=2, backoff=2, key="b"), "ok")
        self.assertEqual(func.call_count, 3)
        func.assert_called_with("a", key="b")
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [2, 4])

    @patch('ado_process_migrator.utils.azure_client.time.sleep')
    def test_permanent_errors_are_raised_immediately(self, mock_sleep):
        func = MagicMock(side_effect=AzureDevOpsApiError(400, "bad request"))

        with self.assertRaises(AzureDevOpsApiError):
            retry(func, retries=3)
        self.assertEqual(func.call_count, 1)
        mock_sleep.assert_not_called()

    @patch('ado_process_migrator.utils.azure_client.time.sleep')
    def test_gives_up_after_retries(self, mock_sleep):
        func = MagicMock(side_effect=AzureDevOpsApiError(429, "slow down"))

        with self.assertRaises(AzureDevOpsApiError) as ctx:
            retry(func, retries=2, delay=1)
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(func.call_count, 3)
        self.assertEqual(mock_sleep.call_count, 2)

    def test_transient_classification(self):
        self.assertTrue(is_transient_error(AzureDevOpsApiError(500, "")))
        self.assertTrue(is_transient_error(requests.Timeout()))
        self.assertFalse(is_transient_error(AzureDevOpsApiError(404, "")))
        self.assertFalse(is_transient_error(ValueError("x")))
        self.assertTrue(AzureDevOpsApiError(404, "missing").is_not_found)


class TestRestCalls(unittest.TestCase):

    def setUp(self):
        self.client = AzureDevOpsClient("contoso", "secret-pat", retries=2, retry_delay=0)
        self.session = MagicMock()
        self.client._session = self.session

    def test_request_url_and_api_version(self):
        self.session.request.return_value = make_response(payload={"typeId": "p1", "name": "Agile-Custom"})

        process = self.client.get_process("p1")

        self.assertEqual(process["name"], "Agile-Custom")
        method, url = self.session.request.call_args[0]
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://dev.azure.com/contoso/_apis/work/processes/p1")
        self.assertEqual(self.session.request.call_args.kwargs["params"], {"api-version": "7.1"})

    def test_list_follows_continuation_token(self):
        self.session.request.side_effect = [
            make_response(payload={"value": [{"name": "A"}]}, headers={"x-ms-continuationtoken": "next-page"}),
            make_response(payload={"value": [{"name": "B"}]}),
        ]

        projects = self.client.get_projects()

        self.assertEqual([p["name"] for p in projects], ["A", "B"])
        first, second = self.session.request.call_args_list
        self.assertEqual(first.kwargs["params"], {"api-version": "7.1", "stateFilter": "All"})
        self.assertEqual(second.kwargs["params"]["continuationToken"], "next-page")

    def test_error_status_raises_with_service_message(self):
        self.session.request.return_value = make_response(404, payload={"message": "Project not found"})

        with self.assertRaises(AzureDevOpsApiError) as ctx:
            self.client.get_project("missing")
        self.assertTrue(ctx.exception.is_not_found)
        self.assertEqual(ctx.exception.message, "Project not found")
        self.assertEqual(self.session.request.call_count, 1)

    @patch('ado_process_migrator.utils.azure_client.time.sleep')
    def test_server_errors_are_retried(self, mock_sleep):
        bad_gateway = make_response(502, text="Bad gateway")
        bad_gateway.json.side_effect = ValueError("not json")
        self.session.request.side_effect = [bad_gateway, make_response(payload={"id": "s1"})]

        state = self.client.create_state("p1", "Custom.Bug", {"name": "Resolved"})

        self.assertEqual(state, {"id": "s1"})
        self.assertEqual(self.session.request.call_count, 2)
        self.assertEqual(self.session.request.call_args.kwargs["json"], {"name": "Resolved"})

    def test_empty_body(self):
        self.session.request.return_value = make_response(204)
        self.assertEqual(self.client.hide_state("p1", "Custom.Bug", "s1"), {})
        self.assertEqual(self.session.request.call_args[0][0], "PUT")
        self.assertEqual(self.session.request.call_args.kwargs["json"], {"hidden": True})

    def test_add_section_patches_the_page(self):
        self.session.request.return_value = make_response(payload={"id": "page-1", "sections": []})
        page = {"id": "page-1", "sections": [{"id": "Section1", "groups": []}]}

        self.client.add_section("p1", "Custom.Bug", page, {"id": "Section4", "groups": []})

        self.assertEqual(self.session.request.call_args[0][0], "PATCH")
        body = self.session.request.call_args.kwargs["json"]
        self.assertEqual([s["id"] for s in body["sections"]], ["Section1", "Section4"])
        self.assertEqual(len(page["sections"]), 1)

    @patch('ado_process_migrator.utils.azure_client.time.sleep')
    def test_wait_for_operation(self, mock_sleep):
        self.session.request.side_effect = [
            make_response(payload={"id": "op-1", "status": "inProgress"}),
            make_response(payload={"id": "op-1", "status": "succeeded"}),
        ]

        result = self.client.wait_for_operation({"id": "op-1", "status": "queued"}, poll_interval=1)

        self.assertEqual(result["status"], "succeeded")
        self.assertEqual(mock_sleep.call_count, 2)
        self.assertTrue(self.session.request.call_args[0][1].endswith("/_apis/operations/op-1"))

    @patch('ado_process_migrator.utils.azure_client.time.sleep')
    def test_failed_operation_raises(self, mock_sleep):
        self.session.request.return_value = make_response(payload={"id": "op-1", "status": "failed",
                                                                   "resultMessage": "name in use"})
        with self.assertRaises(AzureDevOpsApiError):
            self.client.wait_for_operation({"id": "op-1", "status": "queued"})

    def test_download_attachment_uses_absolute_url(self):
        response = make_response()
        response.content = b"bytes"
        self.session.request.return_value = response
        url = "https://dev.azure.com/contoso/_apis/wit/attachments/abc?fileName=a.txt"

        self.assertEqual(self.client.download_attachment(url), b"bytes")
        self.assertEqual(self.session.request.call_args[0][1], url)
        self.assertEqual(self.session.request.call_args.kwargs["params"]["download"], "true")


class TestWorkItemCalls(unittest.TestCase):

    def setUp(self):
        self.client = AzureDevOpsClient("contoso", "secret-pat", retries=0)
        self.wit_client = MagicMock()
        self.client._work_item_client = self.wit_client

    def make_work_item(self, work_item_id, fields, relations=None):
        work_item = MagicMock()
        work_item.id = work_item_id
        work_item.rev = 1
        work_item.url = f"https://dev.azure.com/contoso/_apis/wit/workItems/{work_item_id}"
        work_item.fields = fields
        work_item.relations = relations
        return work_item

    def test_query_work_item_ids(self):
        self.wit_client.query_by_wiql.return_value.work_items = [MagicMock(id=3), MagicMock(id=1)]

        self.assertEqual(self.client.query_work_item_ids("SELECT [System.Id] FROM WorkItems"), [3, 1])
        wiql = self.wit_client.query_by_wiql.call_args[0][0]
        self.assertEqual(wiql.query, "SELECT [System.Id] FROM WorkItems")
        self.assertIsNone(self.wit_client.query_by_wiql.call_args.kwargs["top"])

        self.client.query_work_item_ids("SELECT [System.Id] FROM WorkItems", top=500)
        self.assertEqual(self.wit_client.query_by_wiql.call_args.kwargs["top"], 500)

    def test_get_work_items(self):
        relation = MagicMock(rel="AttachedFile", url="https://x/attachments/1", attributes={"name": "a.txt"})
        self.wit_client.get_work_items.return_value = [self.make_work_item(7, {"System.Id": 7}, [relation]), None]

        items = self.client.get_work_items([7, 8], expand="Relations")

        self.assertEqual(items, [{
            "id": 7,
            "rev": 1,
            "url": "https://dev.azure.com/contoso/_apis/wit/workItems/7",
            "fields": {"System.Id": 7},
            "relations": [{"rel": "AttachedFile", "url": "https://x/attachments/1", "attributes": {"name": "a.txt"}}],
        }])
        self.assertEqual(self.wit_client.get_work_items.call_args.kwargs["error_policy"], "omit")
        self.assertEqual(self.client.get_work_items([]), [])

    def test_create_work_item_builds_patch_document(self):
        self.wit_client.create_work_item.return_value = self.make_work_item(10, {"System.Title": "T"})

        created = self.client.create_work_item("Sample", "Bug", [
            {"op": "add", "path": "/fields/System.Title", "value": "T"},
        ])

        document, project, work_item_type = self.wit_client.create_work_item.call_args[0]
        self.assertEqual((project, work_item_type), ("Sample", "Bug"))
        self.assertEqual(document[0].path, "/fields/System.Title")
        self.assertEqual(document[0].value, "T")
        self.assertEqual(created["id"], 10)
        self.assertEqual(created["relations"], [])

    def test_get_comments_follows_continuation(self):
        author = MagicMock(display_name="Dana Smith", unique_name="dana@contoso.com")
        first = MagicMock(comments=[MagicMock(id=1, text="one", created_date=datetime(2024, 1, 1), created_by=author)],
                          continuation_token="token")
        second = MagicMock(comments=[MagicMock(id=2, text=None, created_date=None, created_by=None)],
                           continuation_token=None)
        self.wit_client.get_comments.side_effect = [first, second]

        comments = self.client.get_comments("Sample", 5)

        self.assertEqual([c["id"] for c in comments], [1, 2])
        self.assertEqual(comments[0]["createdBy"]["uniqueName"], "dana@contoso.com")
        self.assertEqual(comments[0]["createdDate"], "2024-01-01T00:00:00")
        self.assertEqual(comments[1]["text"], "")
        self.assertEqual(self.wit_client.get_comments.call_args.kwargs["continuation_token"], "token")

    def test_upload_attachment(self):
        self.wit_client.create_attachment.return_value = MagicMock(id="guid-1", url="https://x/attachments/guid-1")

        self.assertEqual(self.client.upload_attachment("Sample", "a.txt", b"data"),
                         {"id": "guid-1", "url": "https://x/attachments/guid-1"})
        self.assertEqual(self.wit_client.create_attachment.call_args.kwargs["file_name"], "a.txt")


if __name__ == '__main__':
    unittest.main()
