"""
Unit tests for the submission pipeline, asset stores and helpers.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from types import SimpleNamespace

import pytest

from adboard.assets import (
    CloudinaryAssetStore,
    ImageUpload,
    LocalAssetStore,
    build_asset_store,
    read_upload,
    validate_image,
)
from adboard.errors import AssetStoreError, QuotaExceededError, StorageError, UploadError, ValidationError
from adboard.schemas import Confirmation
from adboard.storage import (
    build_engine,
    build_session_factory,
    count_ads_by_phone,
    get_ads_sorted,
    init_db,
)
from adboard.submission import SubmissionPipeline, parse_submission
from adboard.utils import StripedLock, group_by_category
from conftest import make_settings

FORM = {"phone": "+12015550123", "city": "NYC", "group": "food"}


def png(size=16, name="photo.png"):
    return ImageUpload(filename=name, content_type="image/png", data=b"\0" * size)


@pytest.fixture
def pipeline(db, asset_store):
    return SubmissionPipeline(db=db, asset_store=asset_store, phone_locks=StripedLock())


class TestSubmissionPipeline:

    def test_scenario(self, pipeline, db):
        """Two submissions for one phone succeed, the third raises."""
        first = pipeline.submit(FORM)
        second = pipeline.submit({**FORM, "city": "Boston"})

        assert first.image_url == ""
        assert second.created_at >= first.created_at
        assert count_ads_by_phone(db, "+12015550123") == 2

        with pytest.raises(QuotaExceededError) as excinfo:
            pipeline.submit({**FORM, "city": "Chicago"})

        assert excinfo.value.limit == 2
        assert count_ads_by_phone(db, "+12015550123") == 2

    def test_upload_checked_before_fields(self, pipeline, asset_store):
        with pytest.raises(UploadError):
            pipeline.submit({"phone": "bad"}, png(size=3 * 1024 * 1024))

        assert asset_store.saved == []

    def test_confirmation_carries_image_url(self, pipeline):
        confirmation = pipeline.submit(FORM, png())

        assert confirmation.image_url == "https://assets.example.test/ads/1.png"
        assert confirmation.category == "food"

    def test_repository_failure(self, pipeline, monkeypatch):
        def broken(db, phone):
            raise StorageError("Could not check existing ads")

        monkeypatch.setattr("adboard.submission.count_ads_by_phone", broken)

        with pytest.raises(StorageError):
            pipeline.submit(FORM)

    def test_created_at_is_utc(self, pipeline, db):
        confirmation = pipeline.submit(FORM)

        db.expire_all()
        stored = get_ads_sorted(db)

        assert confirmation.created_at.utcoffset() == timedelta(0)
        assert stored[0].created_at.utcoffset() == timedelta(0)


class TestConcurrentSubmissions:
    """Concurrent submissions for one phone against a file-backed database."""

    def test_quota_holds_across_threads(self, tmp_path, asset_store):
        engine = build_engine(f"sqlite:///{tmp_path / 'ads.db'}")
        init_db(engine)
        session_factory = build_session_factory(engine)
        phone_locks = StripedLock()
        workers = 8
        barrier = threading.Barrier(workers)

        def submit(n):
            db = session_factory()
            try:
                pipeline = SubmissionPipeline(db=db, asset_store=asset_store, phone_locks=phone_locks)
                barrier.wait()
                return pipeline.submit({**FORM, "city": f"City {n}"})
            except QuotaExceededError as e:
                return e
            finally:
                db.close()

        try:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(submit, range(workers)))

            created = [r for r in results if isinstance(r, Confirmation)]
            rejected = [r for r in results if isinstance(r, QuotaExceededError)]
            assert len(created) == 2
            assert len(rejected) == workers - 2

            with session_factory() as db:
                assert count_ads_by_phone(db, FORM["phone"]) == 2
        finally:
            engine.dispose()


class TestParseSubmission:

    def test_collects_every_problem(self):
        with pytest.raises(ValidationError) as excinfo:
            parse_submission({"phone": "x", "city": "", "group": "food"})

        assert "phone: Invalid phone number" in excinfo.value.message
        assert "city: City is required" in excinfo.value.message

    def test_none_values_ignored(self):
        submission = parse_submission({**FORM, "address": None})

        assert submission.address == ""

    def test_permissive_categories(self):
        submission = parse_submission({**FORM, "group": "Garden"}, reject_unknown_categories=False)

        assert submission.group == "garden"

    def test_phone_stored_as_e164(self):
        assert parse_submission({**FORM, "phone": "+1 (201) 555-0123"}).phone == "+12015550123"

    def test_national_phone_uses_region(self):
        submission = parse_submission({**FORM, "phone": "07911 123456"}, phone_region="GB")

        assert submission.phone == "+447911123456"

    def test_national_phone_without_region(self):
        with pytest.raises(ValidationError, match="Invalid phone number"):
            parse_submission({**FORM, "phone": "07911 123456"})

    def test_landline_rejected(self):
        with pytest.raises(ValidationError, match="not a mobile number"):
            parse_submission({**FORM, "phone": "+441212345678"})


class TestValidateImage:

    def test_accepts_png(self):
        validate_image(png(), max_bytes=1024)

    def test_content_type_parameters_ignored(self):
        upload = ImageUpload(filename="a.gif", content_type="image/gif; charset=binary", data=b"GIF89a")
        validate_image(upload, max_bytes=1024)

    def test_size_limit(self):
        validate_image(png(size=1024), max_bytes=1024)
        with pytest.raises(UploadError, match="File too large"):
            validate_image(png(size=1025), max_bytes=1024)

    def test_extension_and_type_must_both_match(self):
        upload = ImageUpload(filename="a.png", content_type="application/pdf", data=b"")
        with pytest.raises(UploadError, match="Only image files"):
            validate_image(upload, max_bytes=1024)

    def test_read_upload_without_filename(self):
        assert read_upload("", "application/octet-stream", b"") is None
        assert read_upload("a.png", None, b"x").content_type == ""


class TestAssetStores:

    def test_local_store_writes_file(self, tmp_path):
        store = LocalAssetStore(str(tmp_path / "uploads"))

        url = store.save(png(size=4))

        assert url.startswith("/uploads/") and url.endswith(".png")
        stored = tmp_path / "uploads" / url.rsplit("/", 1)[1]
        assert stored.read_bytes() == b"\0" * 4

    def test_cloudinary_store(self, monkeypatch):
        calls = []

        def fake_upload(data, **options):
            calls.append(options)
            return {"secure_url": "https://res.cloudinary.com/demo/image/upload/v1/ads/x.png"}

        monkeypatch.setattr("cloudinary.uploader.upload", fake_upload)
        store = CloudinaryAssetStore("demo", "key", "secret", folder="ads", max_width=800)

        url = store.save(png())

        assert url == "https://res.cloudinary.com/demo/image/upload/v1/ads/x.png"
        assert calls[0]["folder"] == "ads"
        assert calls[0]["transformation"] == [{"width": 800, "crop": "limit"}]
        assert calls[0]["cloud_name"] == "demo"

    def test_cloudinary_failure(self, monkeypatch):
        def fake_upload(data, **options):
            raise RuntimeError("connection reset")

        monkeypatch.setattr("cloudinary.uploader.upload", fake_upload)
        store = CloudinaryAssetStore("demo", "key", "secret")

        with pytest.raises(AssetStoreError):
            store.save(png())

    def test_build_asset_store(self, tmp_path):
        local = build_asset_store(make_settings(UPLOADS_DIR=str(tmp_path)))
        remote = build_asset_store(make_settings(
            CLOUDINARY_CLOUD_NAME="demo",
            CLOUDINARY_API_KEY="key",
            CLOUDINARY_API_SECRET="secret",
        ))

        assert isinstance(local, LocalAssetStore)
        assert isinstance(remote, CloudinaryAssetStore)


class TestHelpers:

    def test_group_by_category(self):
        ads = [
            SimpleNamespace(category="food"),
            SimpleNamespace(category="FOOD"),
            SimpleNamespace(category="garden"),
            SimpleNamespace(category=None),
        ]

        grouped = group_by_category(ads)

        assert list(grouped) == [
            "clothing", "sports", "cosmetics", "jewelry", "food",
            "electronics", "medical", "automobile", "education",
        ]
        assert grouped["food"] == ads[:2]
        assert sum(len(bucket) for bucket in grouped.values()) == 2

    def test_striped_lock_is_stable(self):
        locks = StripedLock(stripes=4)

        assert locks.for_key("+12015550123") is locks.for_key("+12015550123")
