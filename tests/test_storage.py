"""Tests for the Registry Store and Object Storage bindings."""

import pytest
import yaml
from botocore.exceptions import ClientError

from picturebook.common.errors import ProjectNotFound, StorageFailure
from picturebook.storage import (
    LocalObjectStorage,
    R2ObjectStorage,
    YamlProjectStore,
    character_model_path,
    illustration_path,
    illustration_revision,
    prop_photo_path,
    source_photo_path,
)


def test_object_paths_are_stable():
    assert illustration_path("p1", 3) == "illustrations/p1-page-3.png"
    assert illustration_path("p1", 3, 2) == "illustrations/p1-page-3-rev-2.png"
    assert character_model_path("p1") == "character_models/p1.png"
    assert character_model_path("p1", "Grandpa Joe") == "character_models/p1-grandpa_joe.png"
    assert source_photo_path("p1", "Biscuit", ".JPG") == "source_photos/p1/biscuit.jpg"
    assert prop_photo_path("p1", "Red Ball", "png") == "prop_photos/p1/red_ball.png"


def test_illustration_revision_reads_the_slot_back():
    assert illustration_revision("https://cdn.test/illustrations/p1-page-3.png?v=1") == 0
    assert illustration_revision("https://cdn.test/illustrations/p1-page-3-rev-2.png") == 2
    assert illustration_revision("https://elsewhere.test/picture.png") is None
    assert illustration_revision(None) is None


def test_yaml_store_merges_top_level_fields(tmp_path):
    store = YamlProjectStore(tmp_path)
    project_id = store.create_project({"kid_name": "Abby", "pages": [{"page": 1, "text": "Hi."}]})

    merged = store.write_project(project_id, {"story_locked": True})

    assert merged["kid_name"] == "Abby"
    assert merged["story_locked"] is True
    on_disk = yaml.safe_load((tmp_path / f"{project_id}.yaml").read_text(encoding="utf-8"))
    assert on_disk == merged
    assert not list(tmp_path.glob("*.tmp"))


def test_yaml_store_missing_project(tmp_path):
    store = YamlProjectStore(tmp_path)

    with pytest.raises(ProjectNotFound):
        store.load_project("nope")
    with pytest.raises(ProjectNotFound):
        store.write_project("nope", {"title": "x"})
    with pytest.raises(ProjectNotFound):
        store.load_project("../../etc")


def test_yaml_store_rejects_non_mapping_documents(tmp_path):
    (tmp_path / "broken.yaml").write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(StorageFailure):
        YamlProjectStore(tmp_path).load_project("broken")


def test_local_storage_overwrites_in_place(tmp_path):
    storage = LocalObjectStorage(tmp_path)

    first = storage.put("illustrations/p1-page-1.png", b"one")
    second = storage.put("illustrations/p1-page-1.png", b"two")

    assert first == second
    assert first.startswith("file://")
    assert (tmp_path / "illustrations" / "p1-page-1.png").read_bytes() == b"two"


def test_local_storage_public_urls(tmp_path):
    storage = LocalObjectStorage(tmp_path, public_base_url="https://images.example.com/")

    url = storage.put("character_models/p1.png", b"png")

    assert url == "https://images.example.com/character_models/p1.png"


class FakeS3Client:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        if self.error is not None:
            raise self.error
        self.uploads.append((bucket, key, fileobj.read(), ExtraArgs))


def test_r2_upload_returns_public_url():
    client = FakeS3Client()
    storage = R2ObjectStorage(
        account_id="acct",
        access_key_id="key",
        secret_access_key="secret",
        public_url="https://pub.r2.dev/",
        client=client,
    )

    url = storage.put("illustrations/p1-page-2.png", b"png-bytes")

    assert url == "https://pub.r2.dev/illustrations/p1-page-2.png"
    assert client.uploads == [
        ("book-images", "illustrations/p1-page-2.png", b"png-bytes", {"ContentType": "image/png"})
    ]


def test_r2_without_public_url_uses_endpoint():
    storage = R2ObjectStorage(
        account_id="acct", access_key_id="key", secret_access_key="secret", client=FakeS3Client()
    )

    url = storage.put("source_photos/p1/abby.jpg", b"jpeg", "image/jpeg")

    assert url == "https://acct.r2.cloudflarestorage.com/book-images/source_photos/p1/abby.jpg"


def test_r2_client_errors_become_storage_failures():
    error = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
    storage = R2ObjectStorage(
        account_id="acct", access_key_id="key", secret_access_key="secret", client=FakeS3Client(error)
    )

    with pytest.raises(StorageFailure):
        storage.put("illustrations/p1-page-1.png", b"png")
