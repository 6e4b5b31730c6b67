import pytest

from bucketstore import (
    CompositeException,
    InvalidArgumentException,
    ItemInfo,
    ItemNotFoundException,
    ObjectWriteConditions,
    ROOT_INFO,
    StorageOptions,
    StorageResourceId,
    UpdatableItemInfo,
    is_not_found,
    is_rate_limited,
)
from bucketstore._metadata import decode_metadata, encode_metadata
from bucketstore.error import (
    ApiException,
    BucketStoreException,
    create_composite_exception,
    wrap_exception,
)


def test_resource_id_kinds():
    assert StorageResourceId.ROOT.is_root
    assert StorageResourceId("photos").is_bucket
    assert StorageResourceId("photos", "a.jpg").is_storage_object
    assert StorageResourceId("photos", "") == StorageResourceId("photos")
    assert str(StorageResourceId("photos", "dir/a.jpg")) == "gs://photos/dir/a.jpg"


def test_resource_id_rejects_object_without_bucket():
    with pytest.raises(InvalidArgumentException):
        StorageResourceId(None, "a.jpg")
    with pytest.raises(InvalidArgumentException):
        StorageResourceId("")


@pytest.mark.parametrize("size,exists", [(-1, False), (0, True), (10, True)])
def test_exists_follows_size(size, exists):
    info = ItemInfo(StorageResourceId("photos", "a.jpg"), size=size)
    assert info.exists() is exists


def test_not_found_and_root_infos():
    missing = ItemInfo.not_found(StorageResourceId("photos", "a.jpg"))

    assert missing.size == -1 and missing.creation_time == 0
    assert "exists: no" in str(missing)
    assert ROOT_INFO.exists() and ROOT_INFO.is_root
    with pytest.raises(InvalidArgumentException):
        ItemInfo(None)


def test_updatable_item_info_requires_object():
    with pytest.raises(InvalidArgumentException):
        UpdatableItemInfo(StorageResourceId("photos"), {})


def test_write_conditions_to_params():
    assert ObjectWriteConditions().to_params() == {}
    assert ObjectWriteConditions(content_generation_match=0).to_params() == {"ifGenerationMatch": "0"}
    conditions = ObjectWriteConditions(content_generation_match=5, meta_generation_match=2)
    assert conditions.has_meta_generation_match
    assert conditions.to_params() == {"ifGenerationMatch": "5", "ifMetagenerationMatch": "2"}


def test_metadata_codec():
    encoded = encode_metadata({"owner": b"alice", "removed": None})

    assert encoded == {"owner": "YWxpY2U=", "removed": None}
    assert decode_metadata(encoded) == {"owner": b"alice", "removed": None}
    assert decode_metadata(None) == {}


def test_composite_of_one_is_the_error_itself():
    error = ItemNotFoundException("photos", "a.jpg")
    assert create_composite_exception([error]) is error

    composite = create_composite_exception([error, ItemNotFoundException("photos", "b.jpg")])
    assert isinstance(composite, CompositeException)
    assert "gs://photos/b.jpg" in str(composite)


def test_wrapping_keeps_classification():
    wrapped = wrap_exception(ItemNotFoundException("photos", "a.jpg"), "Error copying", "photos", "a.jpg")

    assert isinstance(wrapped, BucketStoreException)
    assert is_not_found(wrapped)
    assert str(wrapped).startswith("Error copying: bucket: photos, object: a.jpg")
    assert wrapped.__cause__ is not None


def test_rate_limit_classification():
    assert is_rate_limited(ApiException("quota", 429))
    assert is_rate_limited(ApiException("quota", 403, "userRateLimitExceeded"))
    assert not is_rate_limited(ApiException("forbidden", 403, "forbidden"))


def test_options_from_env(monkeypatch):
    monkeypatch.setenv("BUCKETSTORE_PROJECT_ID", "my-project")
    monkeypatch.setenv("BUCKETSTORE_MAX_REQUESTS_PER_BATCH", "50")
    monkeypatch.setenv("BUCKETSTORE_AUTO_REPAIR", "false")

    options = StorageOptions.from_env()

    assert options.project_id == "my-project"
    assert options.max_requests_per_batch == 50
    assert options.auto_repair_implicit_directories is False
    assert options.max_list_items_per_call == 5000


def test_options_validate():
    with pytest.raises(ValueError):
        StorageOptions(max_requests_per_batch=0).validate()
    with pytest.raises(ValueError):
        StorageOptions(endpoint="storage.example.com").validate()
