import io
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

from file_gateway import config
from file_gateway.app.services.storage_manager import LocalBucket, R2Bucket, create_bucket, key_to_path


@pytest_asyncio.fixture
async def local_bucket(tmp_path):
    bucket = LocalBucket(tmp_path / "data", tmp_path / "temp")
    await bucket.initialize()
    yield bucket


@pytest.fixture
def s3_client():
    with patch("file_gateway.app.services.storage_manager.boto3.client") as mock_client_factory:
        mock_client = MagicMock()
        mock_client_factory.return_value = mock_client
        yield mock_client


@pytest.mark.asyncio
async def test_local_put_and_get(local_bucket):
    await local_bucket.put("albums/2024/photo.jpg", io.BytesIO(b"jpeg-bytes"), "image/jpeg")

    stored = await local_bucket.get("albums/2024/photo.jpg")
    assert stored is not None
    assert stored.key == "albums/2024/photo.jpg"
    assert stored.size == len(b"jpeg-bytes")
    assert stored.content_type == "image/jpeg"
    assert await stored.read() == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_local_put_without_content_type(local_bucket):
    await local_bucket.put("plain", io.BytesIO(b"data"))

    stored = await local_bucket.get("plain")
    assert stored.content_type is None


@pytest.mark.asyncio
async def test_local_get_missing(local_bucket):
    assert await local_bucket.get("nothing/here.txt") is None
    assert await local_bucket.get("") is None


@pytest.mark.parametrize(
    "key, expected",
    [
        ("albums/2024/photo.jpg", "albums/2024/photo.jpg"),
        ("/photo.jpg", "%/photo.jpg"),
        ("a//b.txt", "a/%/b.txt"),
        ("../up.txt", "%2E%2E/up.txt"),
        ("my photo.jpg", "my%20photo.jpg"),
        ("100%.txt", "100%25.txt"),
    ],
)
def test_key_to_path(key, expected):
    assert key_to_path(key).as_posix() == expected


@pytest.mark.asyncio
async def test_local_leading_slash_key_is_distinct(local_bucket):
    await local_bucket.put("/photo.jpg", io.BytesIO(b"slashed"), "image/jpeg")
    await local_bucket.put("photo.jpg", io.BytesIO(b"plain"), "image/jpeg")

    assert await (await local_bucket.get("/photo.jpg")).read() == b"slashed"
    assert await (await local_bucket.get("photo.jpg")).read() == b"plain"


@pytest.mark.asyncio
async def test_local_dot_segments_stay_inside_bucket(local_bucket, tmp_path):
    (tmp_path / "secret.txt").write_bytes(b"secret")
    assert await local_bucket.get("../../secret.txt") is None

    await local_bucket.put("../escape.txt", io.BytesIO(b"x"), "text/plain")
    assert not (local_bucket.data_dir / "escape.txt").exists()
    assert await (await local_bucket.get("../escape.txt")).read() == b"x"


@pytest.mark.asyncio
async def test_local_put_leaves_no_temp_files(local_bucket):
    await local_bucket.put("a.bin", io.BytesIO(b"x" * 20000), None)
    assert list(local_bucket.temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_local_delete(local_bucket):
    await local_bucket.put("gone.txt", io.BytesIO(b"bye"), "text/plain")
    await local_bucket.delete("gone.txt")

    assert await local_bucket.get("gone.txt") is None
    # Deleting again is a no-op
    await local_bucket.delete("gone.txt")


@pytest.mark.asyncio
async def test_initialize_cleans_temp_dir(tmp_path):
    temp_dir = tmp_path / "temp"
    temp_dir.mkdir()
    (temp_dir / "leftover.upload").write_bytes(b"partial")

    bucket = LocalBucket(tmp_path / "data", temp_dir)
    await bucket.initialize()

    assert list(temp_dir.iterdir()) == []
    assert bucket.objects_dir.is_dir()
    assert bucket.metadata_dir.is_dir()


@pytest.mark.asyncio
async def test_r2_get(s3_client):
    body = MagicMock()
    body.read.side_effect = [b"png-", b"bytes", b""]
    s3_client.get_object.return_value = {"Body": body, "ContentType": "image/png", "ContentLength": 9}

    bucket = R2Bucket("uploads", endpoint_url="https://account.r2.cloudflarestorage.com")
    stored = await bucket.get("images/logo.png")

    s3_client.get_object.assert_called_once_with(Bucket="uploads", Key="images/logo.png")
    assert stored.size == 9
    assert stored.content_type == "image/png"
    # The body is only read once the stream is consumed
    body.read.assert_not_called()

    assert await stored.read() == b"png-bytes"
    body.close.assert_called_once()


@pytest.mark.asyncio
async def test_r2_get_missing(s3_client):
    s3_client.get_object.side_effect = ClientError(
        {"Error": {"Code": "NoSuchKey", "Message": "Not found"}}, "GetObject"
    )

    bucket = R2Bucket("uploads")
    assert await bucket.get("missing.png") is None


@pytest.mark.asyncio
async def test_r2_get_propagates_other_errors(s3_client):
    s3_client.get_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "GetObject"
    )

    bucket = R2Bucket("uploads")
    with pytest.raises(ClientError):
        await bucket.get("private.png")


@pytest.mark.asyncio
async def test_r2_put_sets_content_type(s3_client):
    bucket = R2Bucket("uploads")
    file = io.BytesIO(b"data")

    await bucket.put("docs/report.pdf", file, "application/pdf")

    s3_client.upload_fileobj.assert_called_once_with(
        file, "uploads", "docs/report.pdf", ExtraArgs={"ContentType": "application/pdf"}
    )


@pytest.mark.asyncio
async def test_r2_delete(s3_client):
    bucket = R2Bucket("uploads")
    await bucket.delete("old.txt")
    s3_client.delete_object.assert_called_once_with(Bucket="uploads", Key="old.txt")


def test_r2_passes_credentials():
    with patch("file_gateway.app.services.storage_manager.boto3.client") as mock_client_factory:
        R2Bucket("uploads", endpoint_url="https://r2.example", access_key_id="id", secret_access_key="key")

    mock_client_factory.assert_called_once_with(
        "s3",
        endpoint_url="https://r2.example",
        region_name="auto",
        aws_access_key_id="id",
        aws_secret_access_key="key",
    )


@pytest.mark.asyncio
async def test_create_bucket_local(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(config, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(config, "TEMP_DIR", str(tmp_path / "temp"))

    bucket = await create_bucket()
    assert isinstance(bucket, LocalBucket)
    assert bucket.objects_dir.is_dir()


@pytest.mark.asyncio
async def test_create_bucket_r2_requires_bucket_name(monkeypatch):
    monkeypatch.setattr(config, "STORAGE_BACKEND", "r2")
    monkeypatch.setattr(config, "R2_BUCKET", "")

    with pytest.raises(ValueError):
        await create_bucket()


@pytest.mark.asyncio
async def test_create_bucket_unknown_backend(monkeypatch):
    monkeypatch.setattr(config, "STORAGE_BACKEND", "ftp")

    with pytest.raises(ValueError, match="Unknown storage backend"):
        await create_bucket()
