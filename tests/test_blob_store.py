# FILE: tests/test_blob_store.py
import boto3
import pytest
from botocore.config import Config
from botocore.stub import Stubber

from capsule.services.blob_store import BlobStore, normalize_extension
from capsule.services.errors import ConfigurationError, StorageError, ValidationError

BUCKET = "digital-gifts-assets"
PUBLIC = "https://pub.example.r2.dev"


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        endpoint_url="https://account.r2.cloudflarestorage.com",
        region_name="us-east-1",
        aws_access_key_id="test-access",
        aws_secret_access_key="test-secret",
        config=Config(signature_version="s3v4"),
    )


@pytest.fixture
def store(s3_client):
    return BlobStore(bucket_name=BUCKET, public_url=PUBLIC + "/", client=s3_client)


@pytest.mark.parametrize("filename,expected", [
    ("Photo.JPG", "jpg"),
    ("archive.tar.gz", "gz"),
    ("weird.p-n_g", "png"),
    ("no_extension", "jpg"),
    ("trailing.", "jpg"),
    ("C:\\pics\\cat.webp", "webp"),
])
def test_normalize_extension(filename, expected):
    assert normalize_extension(filename) == expected


def test_key_for_locations(store):
    assert store.key_for(f"{PUBLIC}/abc.jpg") == "abc.jpg"
    assert store.key_for(f"{PUBLIC}/dir/a%20b.png?v=2") == "dir/a b.png"
    assert store.key_for("https://elsewhere.example.com/x/y.jpg") is None
    assert store.key_for(f"{PUBLIC}.evil.example.com/abc.jpg") is None
    assert store.key_for(f"{PUBLIC}/") is None
    assert store.key_for("not a url") is None
    assert store.key_for("https://host.example.com/") is None
    assert store.key_for("") is None


def test_upload_grant_is_presigned_and_unique(store):
    first = store.request_upload_grant("Holiday.PNG", "image/png")
    second = store.request_upload_grant("Holiday.PNG", "image/png")

    assert first.key != second.key
    assert first.key.endswith(".png")
    assert first.public_url == f"{PUBLIC}/{first.key}"
    assert first.key in first.upload_url
    assert "X-Amz-Expires=360" in first.upload_url
    assert first.expires_in == 360


def test_upload_grant_requires_configuration(s3_client):
    with pytest.raises(ConfigurationError):
        BlobStore(bucket_name=None, public_url=PUBLIC, client=s3_client).request_upload_grant("a.jpg", "image/jpeg")
    with pytest.raises(ConfigurationError):
        BlobStore(bucket_name=BUCKET, public_url=None, client=s3_client).request_upload_grant("a.jpg", "image/jpeg")


def test_upload_grant_validates_request(store):
    with pytest.raises(ValidationError):
        store.request_upload_grant("", "image/jpeg")
    with pytest.raises(ValidationError):
        store.request_upload_grant("a.jpg", "")
    with pytest.raises(ValidationError):
        store.request_upload_grant("script.js", "application/javascript")


@pytest.mark.asyncio
async def test_delete_objects_reports_per_location(store, s3_client):
    ok, bad = f"{PUBLIC}/ok.jpg", f"{PUBLIC}/bad.jpg"
    stubber = Stubber(s3_client)
    stubber.add_response(
        "delete_objects",
        {"Errors": [{"Key": "bad.jpg", "Code": "AccessDenied", "Message": "Access Denied"}]},
    )

    with stubber:
        report = await store.delete_objects([ok, bad, "::garbage::"])

    assert report.deleted == [ok]
    assert report.failed == {bad: "AccessDenied: Access Denied"}
    assert report.skipped == ["::garbage::"]
    assert not report.ok
    stubber.assert_no_pending_responses()


@pytest.mark.asyncio
async def test_delete_objects_request_failure_fails_every_location(store, s3_client):
    locations = [f"{PUBLIC}/a.jpg", f"{PUBLIC}/b.jpg"]
    stubber = Stubber(s3_client)
    stubber.add_client_error("delete_objects", service_error_code="InternalError", http_status_code=500)

    with stubber:
        report = await store.delete_objects(locations)

    assert set(report.failed) == set(locations)
    assert report.deleted == []


@pytest.mark.asyncio
async def test_delete_objects_with_only_malformed_locations_makes_no_request(store, s3_client):
    stubber = Stubber(s3_client)

    with stubber:
        report = await store.delete_objects(["", "relative/path.jpg"])

    assert report.ok
    assert report.skipped == ["", "relative/path.jpg"]


@pytest.mark.asyncio
async def test_delete_objects_requires_bucket(s3_client):
    store = BlobStore(bucket_name=None, public_url=PUBLIC, client=s3_client)

    with pytest.raises(ConfigurationError):
        await store.delete_objects([f"{PUBLIC}/a.jpg"])


@pytest.mark.asyncio
async def test_exists_maps_404_to_false(store, s3_client):
    stubber = Stubber(s3_client)
    stubber.add_response("head_object", {"ContentLength": 10}, {"Bucket": BUCKET, "Key": "here.jpg"})
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
    stubber.add_client_error("head_object", service_error_code="AccessDenied", http_status_code=403)

    with stubber:
        assert await store.exists(f"{PUBLIC}/here.jpg") is True
        assert await store.exists(f"{PUBLIC}/gone.jpg") is False
        with pytest.raises(StorageError):
            await store.exists(f"{PUBLIC}/locked.jpg")


def test_key_for_without_public_base_maps_nothing(s3_client):
    store = BlobStore(bucket_name=BUCKET, public_url=None, client=s3_client)

    assert store.key_for(f"{PUBLIC}/abc.jpg") is None


@pytest.mark.asyncio
async def test_delete_objects_skips_locations_on_other_hosts(store, s3_client):
    ours, foreign = f"{PUBLIC}/ours.jpg", "https://elsewhere.example.com/ours.jpg"
    stubber = Stubber(s3_client)
    stubber.add_response("delete_objects", {})

    with stubber:
        report = await store.delete_objects([ours, foreign])

    assert report.deleted == [ours]
    assert report.skipped == [foreign]
    assert report.ok
    stubber.assert_no_pending_responses()
