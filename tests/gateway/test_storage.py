from shotpix.gateway.storage import GCSAssetStore, content_type_to_extension, new_result_key, store_result
from tests.gateway.helpers import FakeAssetStore


class _FakeBlob:
    def __init__(self, bucket: "_FakeBucket", name: str) -> None:
        self._bucket = bucket
        self.name = name
        self.cache_control = None
        self.metadata = None
        self.patched = 0

    def exists(self) -> bool:
        return self.name in self._bucket.objects

    def download_as_bytes(self) -> bytes:
        return self._bucket.objects[self.name][0]

    def upload_from_string(self, data: bytes, content_type: str) -> None:
        self._bucket.objects[self.name] = (data, content_type)
        self._bucket.blobs[self.name] = self

    def patch(self) -> None:
        self.patched += 1


class _FakeBucket:
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.blobs: dict[str, _FakeBlob] = {}

    def blob(self, name: str) -> _FakeBlob:
        return self.blobs.get(name) or _FakeBlob(self, name)

    def get_blob(self, name: str) -> _FakeBlob | None:
        return self.blobs.get(name)


class _FakeClient:
    def __init__(self) -> None:
        self.buckets: dict[str, _FakeBucket] = {}

    def bucket(self, name: str) -> _FakeBucket:
        return self.buckets.setdefault(name, _FakeBucket())


async def test_gcs_store_round_trips_objects_and_metadata() -> None:
    client = _FakeClient()
    store = GCSAssetStore("assets", client=client, cache_control="public, max-age=60")

    await store.write("presets/a.png", b"png", "image/png")
    await store.write_metadata("presets/a.png", {"prompt_json": "{}"})
    await store.write_metadata("presets/a.png", {"owner": "ops"})

    blob = client.buckets["assets"].blobs["presets/a.png"]
    assert blob.cache_control == "public, max-age=60"
    assert blob.patched == 2
    assert await store.read("presets/a.png") == b"png"
    assert await store.read_metadata("presets/a.png") == {"prompt_json": "{}", "owner": "ops"}
    assert await store.read("presets/missing.png") is None
    assert await store.read_metadata("presets/missing.png") is None


async def test_store_result_uses_results_prefix() -> None:
    store = FakeAssetStore()

    key = await store_result(store, b"webp", "image/webp")

    assert key.startswith("results/") and key.endswith(".webp")
    assert store.objects[key] == (b"webp", "image/webp")


def test_result_keys_are_unique() -> None:
    assert new_result_key("image/png") != new_result_key("image/png")
    assert content_type_to_extension("IMAGE/JPEG") == "jpg"
    assert content_type_to_extension("image/gif") == "jpg"
