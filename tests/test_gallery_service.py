"""Tests for gallery persistence and check-and-set updates."""

from datetime import timedelta

import pytest

from models.gallery import GalleryStatus, ImageStatus
from models.schemas import ImageUpdate
from services.blob_store import LocalBlobStore, StaleWriteError
from services.gallery_id import DEFAULT_USER_INPUTS, encode_gallery_id
from services.gallery_progress import InvalidImageIndex
from services.gallery_service import (
    ConcurrentUpdateError,
    GalleryNotFound,
    GalleryService,
    InvalidGalleryId,
    metadata_key,
)


class FlakyStore(LocalBlobStore):
    """Loses the first `conflicts` conditional writes."""

    def __init__(self, root, conflicts: int):
        super().__init__(root)
        self.conflicts = conflicts
        self.attempts = 0

    def put(self, key, data, content_type="application/octet-stream", if_match=None, if_none_match=False):
        if if_match is not None:
            self.attempts += 1
            if self.attempts <= self.conflicts:
                raise StaleWriteError(f"{key} changed since it was read")
        return super().put(key, data, content_type, if_match=if_match, if_none_match=if_none_match)


class InterleavingStore(LocalBlobStore):
    """Lets another writer update slot 4 right before our first conditional write lands."""

    def __init__(self, root):
        super().__init__(root)
        self.galleries = None
        self.interleaved = False

    def put(self, key, data, content_type="application/octet-stream", if_match=None, if_none_match=False):
        if if_match is not None and not self.interleaved:
            self.interleaved = True
            gallery_id = key.split("/")[1]
            self.galleries.update_image(gallery_id, 4, ImageUpdate(status=ImageStatus.FAILED, error="other writer"))
        return super().put(key, data, content_type, if_match=if_match, if_none_match=if_none_match)


class TestCreateAndLoad:
    def test_create_gallery(self, galleries, store, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        document, _ = store.get_json(metadata_key(gallery.id))
        assert document["id"] == gallery.id
        assert document["status"] == "generating"
        assert [img["status"] for img in document["images"]] == ["pending"] * 4
        assert document["userInputs"]["location"] == "Kyoto"
        assert gallery.expires_at - gallery.created_at == timedelta(days=30)

    def test_load_round_trip(self, galleries, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        loaded = galleries.load(gallery.id)
        assert loaded.id == gallery.id
        assert loaded.user_inputs == user_inputs
        assert loaded.expires_at == gallery.expires_at

    def test_load_missing(self, galleries, user_inputs):
        assert galleries.load(encode_gallery_id(user_inputs)) is None

    def test_invalid_id(self, galleries):
        with pytest.raises(InvalidGalleryId):
            galleries.load("../../etc/passwd")

    def test_unparseable_document_is_missing(self, galleries, store):
        store.put(metadata_key("deadbeef_x"), b"{not json")
        assert galleries.load("deadbeef_x") is None
        store.put_json(metadata_key("deadbeef_y"), {"id": "deadbeef_y"})
        assert galleries.load("deadbeef_y") is None

    def test_document_without_inputs_gets_decoded_inputs(self, galleries, store, user_inputs):
        gallery_id = encode_gallery_id(user_inputs)
        store.put_json(metadata_key(gallery_id), {"id": gallery_id, "expiresAt": "2030-01-01T00:00:00+00:00"})
        assert galleries.load(gallery_id).user_inputs == user_inputs

    def test_placeholder_is_not_saved(self, galleries, store, user_inputs):
        gallery_id = encode_gallery_id(user_inputs)
        placeholder = galleries.get_or_placeholder(gallery_id)
        assert placeholder.status == GalleryStatus.GENERATING
        assert placeholder.user_inputs == user_inputs
        assert store.get(metadata_key(gallery_id)) is None

    def test_placeholder_for_undecodable_id(self, galleries):
        assert galleries.get_or_placeholder("deadbeef").user_inputs == DEFAULT_USER_INPUTS

    def test_to_api(self, galleries, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        payload = galleries.to_api(gallery)
        assert payload["magicLink"] == f"http://testserver/gallery/{gallery.id}"
        assert 0 < payload["timeRemaining"] <= 30 * 24 * 3600 * 1000


class TestUpdates:
    def test_update_image(self, galleries, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        update = ImageUpdate(status=ImageStatus.COMPLETED, web_url="https://cdn/web-2.jpg")
        updated = galleries.update_image(gallery.id, 2, update)
        assert updated.progress.completed == 1
        assert galleries.load(gallery.id).slot(2).web_url == "https://cdn/web-2.jpg"

    def test_update_missing_gallery(self, galleries, user_inputs):
        with pytest.raises(GalleryNotFound):
            galleries.update_image(encode_gallery_id(user_inputs), 1, ImageUpdate(status=ImageStatus.COMPLETED))

    def test_invalid_index_is_not_written(self, galleries, store, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        before = store.get(metadata_key(gallery.id))
        with pytest.raises(InvalidImageIndex):
            galleries.update_image(gallery.id, 7, ImageUpdate(status=ImageStatus.COMPLETED))
        assert store.get(metadata_key(gallery.id)) == before

    def test_set_image_status_with_additional_fields(self, galleries, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        updated = galleries.set_image_status(gallery.id, 3, ImageStatus.GENERATING, {"requestId": "req-9"})
        assert updated.slot(3).status == ImageStatus.GENERATING
        assert updated.slot(3).request_id == "req-9"

    def test_fail_unfinished_keeps_completed(self, galleries, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        galleries.update_image(gallery.id, 1, ImageUpdate(status=ImageStatus.COMPLETED))
        updated = galleries.fail_unfinished(gallery.id, "Image generation is not configured")
        assert [s.status for s in updated.images] == [
            ImageStatus.COMPLETED,
            ImageStatus.FAILED,
            ImageStatus.FAILED,
            ImageStatus.FAILED,
        ]
        assert updated.status == GalleryStatus.PARTIAL

    def test_purchased_and_views(self, galleries, user_inputs):
        gallery = galleries.create_gallery(user_inputs)
        galleries.mark_purchased(gallery.id)
        galleries.record_view(gallery.id)
        galleries.record_view(gallery.id)
        loaded = galleries.load(gallery.id)
        assert loaded.purchased is True
        assert loaded.view_count == 2


class TestCheckAndSet:
    def test_retries_after_conflict(self, tmp_path, user_inputs):
        store = FlakyStore(tmp_path, conflicts=2)
        galleries = GalleryService(store, write_retries=5)
        gallery = galleries.create_gallery(user_inputs)
        galleries.update_image(gallery.id, 1, ImageUpdate(status=ImageStatus.COMPLETED))
        assert store.attempts == 3
        assert galleries.load(gallery.id).slot(1).status == ImageStatus.COMPLETED

    def test_gives_up_after_retries(self, tmp_path, user_inputs):
        store = FlakyStore(tmp_path, conflicts=10)
        galleries = GalleryService(store, write_retries=3)
        gallery = galleries.create_gallery(user_inputs)
        with pytest.raises(ConcurrentUpdateError):
            galleries.update_image(gallery.id, 1, ImageUpdate(status=ImageStatus.COMPLETED))
        assert store.attempts == 3

    def test_concurrent_writers_do_not_clobber(self, tmp_path, user_inputs):
        store = InterleavingStore(tmp_path)
        galleries = GalleryService(store)
        store.galleries = galleries
        gallery = galleries.create_gallery(user_inputs)
        galleries.update_image(gallery.id, 1, ImageUpdate(status=ImageStatus.COMPLETED))
        loaded = galleries.load(gallery.id)
        assert loaded.slot(1).status == ImageStatus.COMPLETED
        assert loaded.slot(4).status == ImageStatus.FAILED
        assert loaded.progress.completed == 1 and loaded.progress.failed == 1


class TestCollection:
    def test_collection_summary(self, galleries, user_inputs):
        first = galleries.create_gallery(user_inputs)
        second = galleries.create_gallery(user_inputs.model_copy(update={"location": "Hakone"}))
        galleries.update_image(first.id, 1, ImageUpdate(status=ImageStatus.COMPLETED))
        galleries.update_image(second.id, 2, ImageUpdate(status=ImageStatus.COMPLETED))

        collection = galleries.get_collection([first.id, second.id, first.id, "../bad"])
        assert collection["totalGalleries"] == 2
        assert collection["totalImages"] == 8
        assert collection["completedImages"] == 2
        assert {g["id"] for g in collection["galleries"]} == {first.id, second.id}
        assert collection["earliestExpiry"] == int(first.expires_at.timestamp() * 1000)

    def test_unsaved_ids_count_as_placeholders(self, galleries, user_inputs):
        collection = galleries.get_collection([encode_gallery_id(user_inputs)])
        assert collection["totalGalleries"] == 1
        assert collection["completedImages"] == 0

    def test_no_valid_ids(self, galleries):
        with pytest.raises(GalleryNotFound):
            galleries.get_collection(["../bad", "a/b"])
