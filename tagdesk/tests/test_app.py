import unittest

from fastapi.testclient import TestClient

from tagdesk.app import create_app
from tagdesk.db import InMemoryDbClient
from tagdesk.dependencies import get_db_client, get_storage_client
from tagdesk.routes import MISSING_FIELDS_MESSAGE
from tagdesk.storage import (
    InMemoryStorageClient,
    StorageError,
    StorageErrorCode,
    StorageResult,
)

ALICE = {"X-User-Id": "alice", "X-User-Name": "Alice", "X-User-Email": "alice@example.com"}
BOB = {"X-User-Id": "bob", "X-User-Name": "Bob", "X-User-Email": "bob@example.com"}


def project_payload(**overrides):
    payload = {
        "name": "Reviews",
        "description": "Product reviews",
        "type": "classification",
        "projectDataFormat": "txt",
        "tags": ["good", "bad"],
        "files": [{"name": "reviews.txt", "content": "good value\nbad fit\nok\n"}],
    }
    payload.update(overrides)
    return payload


class DenyingDeleteStorage(InMemoryStorageClient):
    def delete_directory(self, prefix):
        error = StorageError(StorageErrorCode.ACCESS_DENIED, "Access Denied", prefix)
        return StorageResult.failure(error, value=[])


class DenyingUploadStorage(InMemoryStorageClient):
    def upload(self, dest_path, data):
        error = StorageError(StorageErrorCode.UNAVAILABLE, "Connection reset", dest_path)
        return StorageResult.failure(error, value=False)


SHARED_DB = InMemoryDbClient()


class ProjectApiTests(unittest.TestCase):
    def setUp(self):
        self.db = SHARED_DB
        self.db.reset()
        self.storage = InMemoryStorageClient()
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.client = TestClient(self.app)

    def use_storage(self, storage):
        self.storage = storage
        self.app.dependency_overrides[get_storage_client] = lambda: storage

    def create_project(self, headers=ALICE, **overrides):
        response = self.client.post("/project", json=project_payload(**overrides), headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_requests_without_identity_are_rejected(self):
        response = self.client.get("/project")
        self.assertEqual(response.status_code, 401)

    def test_create_project_sets_owner_tags_and_files(self):
        project = self.create_project()

        self.assertEqual(project["owner"]["id"], "alice")
        self.assertEqual(project["owner"]["name"], "Alice")
        self.assertEqual(sorted(tag["tag"] for tag in project["tags"]), ["bad", "good"])
        self.assertEqual(project["type"], "classification")
        self.assertEqual(project["dataFormat"], "txt")
        self.assertEqual(project["dataTags"], {})
        self.assertIsNotNone(project["lastUpdate"])

        expected_path = f"projects/{project['uuid']}/files/reviews.txt"
        self.assertEqual(
            project["files"], [{"name": "reviews.txt", "path": expected_path, "rowCount": 3}]
        )
        self.assertIn(expected_path, self.storage.stored_objects)

    def test_create_project_without_files(self):
        payload = project_payload()
        del payload["files"]
        response = self.client.post("/project", json=payload, headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["files"], [])

    def test_create_project_missing_fields_returns_400(self):
        for field in ("name", "description", "type", "projectDataFormat", "tags"):
            payload = project_payload()
            del payload[field]
            response = self.client.post("/project", json=payload, headers=ALICE)
            self.assertEqual(response.status_code, 400, field)
            self.assertEqual(response.json()["detail"], MISSING_FIELDS_MESSAGE)

        self.assertEqual(self.db.projects, {})
        self.assertEqual(self.db.tags, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_create_project_rejects_unknown_enums(self):
        response = self.client.post("/project", json=project_payload(type="ranking"), headers=ALICE)
        self.assertEqual(response.status_code, 400)
        self.assertIn("type", response.json()["detail"])

        response = self.client.post(
            "/project", json=project_payload(projectDataFormat="xml"), headers=ALICE
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.projects, {})

    def test_create_project_rejects_empty_tag_labels(self):
        for tags in ([""], ["good", "  "]):
            response = self.client.post("/project", json=project_payload(tags=tags), headers=ALICE)
            self.assertEqual(response.status_code, 400, tags)

        self.assertEqual(self.db.projects, {})
        self.assertEqual(self.db.tags, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_create_project_with_bad_file_name_leaves_nothing_behind(self):
        payload = project_payload(files=[{"name": "../escape.txt", "content": "x"}])
        response = self.client.post("/project", json=payload, headers=ALICE)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.projects, {})
        self.assertEqual(self.db.tags, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_create_project_upload_failure_rolls_back(self):
        self.use_storage(DenyingUploadStorage())
        response = self.client.post("/project", json=project_payload(), headers=ALICE)

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "unavailable")
        self.assertEqual(self.db.projects, {})
        self.assertEqual(self.db.tags, {})

    def test_get_project(self):
        project = self.create_project()
        response = self.client.get(f"/project/{project['uuid']}", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Reviews")

    def test_project_of_other_user_is_not_found(self):
        project = self.create_project()
        uuid = project["uuid"]

        response = self.client.get(f"/project/{uuid}", headers=BOB)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], f"Project with 'uuid={uuid}' Not Found.")

        self.assertEqual(
            self.client.post(f"/project/{uuid}", json={"name": "x"}, headers=BOB).status_code, 404
        )
        self.assertEqual(self.client.delete(f"/project/{uuid}", headers=BOB).status_code, 404)
        self.assertEqual(self.client.get(f"/project/{uuid}/export", headers=BOB).status_code, 404)
        self.assertEqual(
            self.client.post(f"/project/{uuid}/generate", headers=BOB).status_code, 404
        )
        self.assertEqual(
            self.client.get(f"/project/{uuid}/dataBatch", headers=BOB).status_code, 404
        )
        self.assertEqual(
            self.client.post(
                f"/project/{uuid}/dataTag", json={"rowId": 0, "tag": "good"}, headers=BOB
            ).status_code,
            404,
        )
        # Still intact for the owner.
        self.assertEqual(self.client.get(f"/project/{uuid}", headers=ALICE).status_code, 200)

    def test_list_projects_is_scoped_and_ordered_by_last_update(self):
        first = self.create_project(name="First")
        second = self.create_project(name="Second")
        self.create_project(headers=BOB, name="Someone else's")

        response = self.client.post(
            f"/project/{first['uuid']}", json={"name": "First (renamed)"}, headers=ALICE
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.get("/project", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [p["uuid"] for p in response.json()], [first["uuid"], second["uuid"]]
        )

    def test_update_project(self):
        project = self.create_project()
        response = self.client.post(
            f"/project/{project['uuid']}",
            json={"name": "Renamed", "description": "New description"},
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["name"], "Renamed")
        self.assertEqual(body["description"], "New description")
        self.assertEqual(len(body["tags"]), 2)

    def test_update_missing_project_returns_404(self):
        response = self.client.post("/project/does-not-exist", json={"name": "x"}, headers=ALICE)
        self.assertEqual(response.status_code, 404)

    def test_delete_project(self):
        project = self.create_project()
        uuid = project["uuid"]

        response = self.client.delete(f"/project/{uuid}", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"")

        self.assertEqual(self.client.get(f"/project/{uuid}", headers=ALICE).status_code, 404)
        self.assertEqual(self.client.get("/project", headers=ALICE).json(), [])
        self.assertEqual(self.client.delete(f"/project/{uuid}", headers=ALICE).status_code, 404)
        self.assertEqual(self.db.tags, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_delete_project_storage_failure_keeps_project(self):
        project = self.create_project()
        self.use_storage(DenyingDeleteStorage(stored_objects=dict(self.storage.stored_objects)))

        response = self.client.delete(f"/project/{project['uuid']}", headers=ALICE)
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "access_denied")

        response = self.client.get(f"/project/{project['uuid']}", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["tags"]), 2)

    def test_data_batch_spans_files(self):
        project = self.create_project(
            files=[
                {"name": "a.txt", "content": "one\ntwo\n"},
                {"name": "b.txt", "content": "three\r\nfour\r\nfive"},
            ]
        )
        response = self.client.get(
            f"/project/{project['uuid']}/dataBatch",
            params={"offset": 1, "limit": 3},
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 200)
        batch = response.json()
        self.assertEqual(batch["total"], 5)
        self.assertEqual(batch["offset"], 1)
        self.assertEqual([row["rowId"] for row in batch["rows"]], [1, 2, 3])
        self.assertEqual([row["text"] for row in batch["rows"]], ["two", "three", "four"])
        self.assertEqual([row["file"] for row in batch["rows"]], ["a.txt", "b.txt", "b.txt"])

    def test_data_batch_rejects_negative_offset(self):
        project = self.create_project()
        response = self.client.get(
            f"/project/{project['uuid']}/dataBatch", params={"offset": -1}, headers=ALICE
        )
        self.assertEqual(response.status_code, 400)

    def test_update_data_tag(self):
        project = self.create_project()
        uuid = project["uuid"]

        response = self.client.post(
            f"/project/{uuid}/dataTag", json={"rowId": 1, "tag": "bad"}, headers=ALICE
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["dataTags"], {"1": "bad"})
        self.assertEqual(body["owner"]["id"], "alice")
        self.assertEqual(len(body["tags"]), 2)

        batch = self.client.get(f"/project/{uuid}/dataBatch", headers=ALICE).json()
        self.assertEqual([row["tag"] for row in batch["rows"]], [None, "bad", None])

        response = self.client.post(
            f"/project/{uuid}/dataTag", json={"rowId": 1, "tag": None}, headers=ALICE
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["dataTags"], {})

    def test_update_data_tag_validation(self):
        project = self.create_project()
        uuid = project["uuid"]

        unknown_tag = self.client.post(
            f"/project/{uuid}/dataTag", json={"rowId": 0, "tag": "meh"}, headers=ALICE
        )
        self.assertEqual(unknown_tag.status_code, 400)

        out_of_range = self.client.post(
            f"/project/{uuid}/dataTag", json={"rowId": 3, "tag": "good"}, headers=ALICE
        )
        self.assertEqual(out_of_range.status_code, 400)

        missing_row = self.client.post(
            f"/project/{uuid}/dataTag", json={"tag": "good"}, headers=ALICE
        )
        self.assertEqual(missing_row.status_code, 400)

    def test_generate_pre_tags_skips_tagged_rows(self):
        project = self.create_project()
        uuid = project["uuid"]
        self.client.post(f"/project/{uuid}/dataTag", json={"rowId": 0, "tag": "bad"}, headers=ALICE)

        response = self.client.post(f"/project/{uuid}/generate", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"total": 3, "generated": 1, "preTags": [{"rowId": 1, "tag": "bad"}]},
        )
        # Suggestions are not persisted.
        stored = self.client.get(f"/project/{uuid}", headers=ALICE).json()
        self.assertEqual(stored["dataTags"], {"0": "bad"})

    def test_export_project(self):
        project = self.create_project()
        uuid = project["uuid"]
        self.client.post(f"/project/{uuid}/dataTag", json={"rowId": 0, "tag": "good"}, headers=ALICE)

        response = self.client.get(f"/project/{uuid}/export", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        content = response.json()["tagsContent"]
        self.assertEqual(
            content.splitlines(),
            [
                "row_id,file,text,tag",
                "0,reviews.txt,good value,good",
                "1,reviews.txt,bad fit,",
                "2,reviews.txt,ok,",
            ],
        )
        self.assertEqual(
            self.storage.stored_objects[f"projects/{uuid}/export/tags.csv"],
            content.encode("utf-8"),
        )

    def test_download_placeholder_returns_empty_body(self):
        project = self.create_project()
        response = self.client.get(f"/project/{project['uuid']}/download", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"")


if __name__ == "__main__":
    unittest.main()
