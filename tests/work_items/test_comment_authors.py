import os
import shutil
import tempfile
import unittest

from ado_process_migrator.utils.json_utils import load_json_data
from ado_process_migrator.work_items.comment_authors import (
    DEFAULT_USER,
    build_author_template,
    distinct_authors,
    export_comment_authors,
)
from tests.fake_azure_devops import FakeOrganization, add_sample_work_items


class TestCommentAuthors(unittest.TestCase):

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()
        self.client = FakeOrganization("contoso-src")
        add_sample_work_items(self.client)

    def tearDown(self):
        shutil.rmtree(self.output_dir)

    def test_distinct_authors(self):
        comments = [
            {"createdBy": {"displayName": "Dana Smith", "uniqueName": "dana@contoso.com"}},
            {"createdBy": {"displayName": "Lee Park"}},
            {"createdBy": {"displayName": "Dana Smith", "uniqueName": "dana@contoso.com"}},
            {"createdBy": None},
        ]
        self.assertEqual(distinct_authors(comments), ["dana@contoso.com", "Lee Park"])

    def test_template_ends_with_default_user(self):
        template = build_author_template(["dana@contoso.com", DEFAULT_USER, "lee@contoso.com"])
        self.assertEqual(list(template), ["dana@contoso.com", "lee@contoso.com", DEFAULT_USER])
        self.assertEqual(template[DEFAULT_USER], {"targetEmail": "", "targetPat": ""})

    def test_export(self):
        path = export_comment_authors(self.client, "Sample", filename="authors.json", base_path=self.output_dir)

        self.assertEqual(str(path), os.path.join(self.output_dir, "authors.json"))
        data = load_json_data(path)
        self.assertEqual(list(data), ["dana@contoso.com", "lee@contoso.com", DEFAULT_USER])
        self.assertEqual(data["lee@contoso.com"], {"targetEmail": "", "targetPat": ""})

    def test_export_skips_unreadable_items(self):
        original = self.client.get_comments

        def get_comments(project, work_item_id):
            if work_item_id == 1:
                raise RuntimeError("forbidden")
            return original(project, work_item_id)

        self.client.get_comments = get_comments
        path = export_comment_authors(self.client, "Sample", base_path=self.output_dir)

        self.assertEqual(list(load_json_data(path)), ["dana@contoso.com", DEFAULT_USER])


if __name__ == '__main__':
    unittest.main()
