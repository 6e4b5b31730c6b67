import pytest

from bucketstore import (
    CompositeException,
    CopyNotSupportedException,
    CreateObjectOptions,
    InMemoryStorage,
    InvalidArgumentException,
    ItemAlreadyExistsException,
    ItemNotFoundException,
    StorageOptions,
    StorageResourceId,
    UpdatableItemInfo,
    is_already_exists,
    is_precondition_failed,
)
from bucketstore.error import BucketStoreException
from bucketstore.memory import _BucketEntry


async def _storage_with(bucket: str, *names: str) -> InMemoryStorage:
    storage = InMemoryStorage()
    await storage.create_bucket(bucket)
    for name in names:
        await storage.create_empty_object(StorageResourceId(bucket, name))
    return storage


@pytest.mark.asyncio
async def test_round_trip():
    storage = await _storage_with("photos")
    resource_id = StorageResourceId("photos", "a.jpg")

    async with await storage.create(resource_id) as channel:
        await channel.write(b"image bytes")

    reader = await storage.open(resource_id)
    assert await reader.read_all() == b"image bytes"


@pytest.mark.asyncio
async def test_create_registers_marker_before_close():
    storage = await _storage_with("photos")
    resource_id = StorageResourceId("photos", "a.jpg")

    channel = await storage.create(resource_id)
    marker = await storage.get_item_info(resource_id)
    await channel.write(b"1234")
    await channel.close()
    final = await storage.get_item_info(resource_id)

    assert marker.exists() and marker.size == 0
    assert final.size == 4
    assert final.content_generation > marker.content_generation


@pytest.mark.asyncio
async def test_close_fails_if_object_replaced():
    storage = await _storage_with("photos")
    resource_id = StorageResourceId("photos", "a.jpg")
    channel = await storage.create(resource_id)
    await storage.create_empty_object(resource_id, CreateObjectOptions(overwrite_existing=True))

    with pytest.raises(BucketStoreException) as excinfo:
        await channel.close()
    assert is_precondition_failed(excinfo.value)


@pytest.mark.asyncio
async def test_create_into_missing_bucket_fails():
    storage = InMemoryStorage()

    with pytest.raises(ItemNotFoundException, match="nonexistent bucket"):
        await storage.create(StorageResourceId("missing", "a.jpg"))


@pytest.mark.asyncio
async def test_create_existing_without_overwrite():
    storage = await _storage_with("photos", "a.jpg")
    before = await storage.get_item_info(StorageResourceId("photos", "a.jpg"))

    with pytest.raises(ItemAlreadyExistsException):
        await storage.create_empty_object(StorageResourceId("photos", "a.jpg"))

    after = await storage.get_item_info(StorageResourceId("photos", "a.jpg"))
    assert after.content_generation == before.content_generation
    assert await storage.list_object_names("photos") == ["a.jpg"]


@pytest.mark.parametrize("name", ["abc", "-abc", "ABCD", "a" * 64, "abc-"])
@pytest.mark.asyncio
async def test_invalid_bucket_names_rejected(name):
    storage = InMemoryStorage()

    with pytest.raises(InvalidArgumentException):
        await storage.create_bucket(name)


@pytest.mark.parametrize("name", ["line\nbreak", "carriage\rreturn", "x" * 1025])
@pytest.mark.asyncio
async def test_invalid_object_names_rejected(name):
    storage = await _storage_with("photos")

    with pytest.raises(InvalidArgumentException):
        await storage.create_empty_object(StorageResourceId("photos", name))


@pytest.mark.asyncio
async def test_create_bucket_twice_fails():
    storage = await _storage_with("photos")

    with pytest.raises(ItemAlreadyExistsException):
        await storage.create_bucket("photos")


@pytest.mark.asyncio
async def test_delete_buckets():
    storage = await _storage_with("empty-bucket")
    await storage.create_bucket("full-bucket")
    await storage.create_empty_object(StorageResourceId("full-bucket", "a.jpg"))

    await storage.delete_buckets(["empty-bucket"])
    assert await storage.list_bucket_names() == ["full-bucket"]

    with pytest.raises(ItemNotFoundException):
        await storage.delete_buckets(["missing-bucket"])

    with pytest.raises(BucketStoreException) as excinfo:
        await storage.delete_buckets(["full-bucket"])
    assert is_already_exists(excinfo.value)


@pytest.mark.asyncio
async def test_delete_objects_ignores_missing():
    storage = await _storage_with("photos", "a.jpg", "b.jpg")

    await storage.delete_objects([
        StorageResourceId("photos", "a.jpg"),
        StorageResourceId("photos", "missing.jpg"),
    ])

    assert await storage.list_object_names("photos") == ["b.jpg"]


@pytest.mark.asyncio
async def test_copy_is_independent_of_source():
    storage = await _storage_with("photos")
    async with await storage.create(StorageResourceId("photos", "a.jpg")) as channel:
        await channel.write(b"original")

    await storage.copy("photos", ["a.jpg"], "photos", ["b.jpg"])
    await storage.delete_objects([StorageResourceId("photos", "a.jpg")])

    reader = await storage.open(StorageResourceId("photos", "b.jpg"))
    assert await reader.read_all() == b"original"


@pytest.mark.asyncio
async def test_copy_validation():
    storage = await _storage_with("photos", "a.jpg")
    await storage.create_bucket("archive")
    storage._buckets["archive"] = _BucketEntry("archive", 0, storage_class="COLDLINE")

    with pytest.raises(InvalidArgumentException):
        await storage.copy("photos", ["a.jpg"], "photos", ["a.jpg"])
    with pytest.raises(CopyNotSupportedException):
        await storage.copy("photos", ["a.jpg"], "archive", ["a.jpg"])
    with pytest.raises(ItemNotFoundException, match="Bucket not found"):
        await storage.copy("photos", ["a.jpg"], "missing", ["a.jpg"])


@pytest.mark.asyncio
async def test_copy_collects_missing_sources():
    storage = await _storage_with("photos", "a.jpg")

    with pytest.raises(CompositeException) as excinfo:
        await storage.copy("photos", ["x.jpg", "y.jpg", "a.jpg"], "photos", ["x2", "y2", "a2"])

    assert len(excinfo.value.inner_exceptions) == 2
    assert await storage.list_object_names("photos") == ["a.jpg", "a2"]


@pytest.mark.asyncio
async def test_listing_groups_and_filters_directory_marker():
    storage = await _storage_with("photos", "dir/", "dir/a.jpg", "dir/sub/b.jpg", "top.jpg")

    assert await storage.list_object_names("photos", "dir/", "/") == ["dir/a.jpg", "dir/sub/"]
    assert await storage.list_object_names("photos", None, "/") == ["dir/", "top.jpg"]
    assert await storage.list_object_names("missing") == []


@pytest.mark.asyncio
async def test_directory_marker_filtered_whatever_the_delimiter():
    storage = await _storage_with("photos", "dir/", "dir/a-b.jpg")

    assert await storage.list_object_names("photos", "dir/", "-") == ["dir/a-"]
    assert await storage.list_object_names("photos", "dir/") == ["dir/a-b.jpg"]


@pytest.mark.asyncio
async def test_list_object_info_repairs_implicit_directories(caplog):
    storage = await _storage_with("photos", "implicit/child.jpg", "top.jpg")

    infos = await storage.list_object_info("photos", None, "/")

    assert sorted(info.object_name for info in infos) == ["implicit/", "top.jpg"]
    assert (await storage.get_item_info(StorageResourceId("photos", "implicit/"))).exists()
    assert "Successfully repaired 1/1 implicit directories." in caplog.text


@pytest.mark.asyncio
async def test_list_object_info_without_auto_repair():
    storage = InMemoryStorage(StorageOptions(auto_repair_implicit_directories=False))
    await storage.create_bucket("photos")
    await storage.create_empty_object(StorageResourceId("photos", "implicit/child.jpg"))

    assert await storage.list_object_info("photos", None, "/") == []


@pytest.mark.asyncio
async def test_item_infos():
    storage = await _storage_with("photos", "a.jpg")
    ids = [StorageResourceId("photos", "missing"), StorageResourceId.ROOT, StorageResourceId("photos")]

    missing, root, bucket = await storage.get_item_infos(ids)

    assert missing.size == -1 and missing.creation_time == 0
    assert root.exists()
    assert bucket.size == 0 and bucket.storage_class == "STANDARD"
    assert [info.bucket_name for info in await storage.list_bucket_info()] == ["photos"]


@pytest.mark.asyncio
async def test_update_items():
    storage = InMemoryStorage()
    await storage.create_bucket("photos")
    await storage.create_empty_object(
        StorageResourceId("photos", "a.jpg"), CreateObjectOptions(metadata={"owner": b"alice", "tag": b"x"})
    )

    updated, missing = await storage.update_items([
        UpdatableItemInfo(StorageResourceId("photos", "a.jpg"), {"owner": b"bob", "tag": None}),
        UpdatableItemInfo(StorageResourceId("photos", "b.jpg"), {"owner": b"bob"}),
    ])

    assert updated.metadata == {"owner": b"bob"}
    assert updated.meta_generation == 2
    assert not missing.exists()


@pytest.mark.asyncio
async def test_wait_for_bucket_empty():
    delays = []

    async def sleep(delay):
        delays.append(delay)

    storage = InMemoryStorage(sleep=sleep)
    await storage.create_bucket("photos")
    await storage.wait_for_bucket_empty("photos")

    await storage.create_empty_object(StorageResourceId("photos", "a.jpg"))
    with pytest.raises(BucketStoreException, match="bucket not empty"):
        await storage.wait_for_bucket_empty("photos")
    assert len(delays) == 20
