import io
from unittest.mock import MagicMock

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws
from PIL import Image

from marketplace.config import settings
from marketplace.limiter import rate_limiter
from marketplace.main import app
from marketplace.security.csrf import csrf_manager


@pytest.fixture(autouse=True)
def clean_security_state():
    """Each test starts with empty rate limit counters and CSRF tokens."""
    rate_limiter.reset()
    csrf_manager.store.clear()
    yield
    rate_limiter.reset()
    csrf_manager.store.clear()


@pytest.fixture
def client():
    # Fresh client per test so cookies from one test never leak into another.
    return TestClient(app)


@pytest.fixture
def s3_client():
    """Provide a mocked S3 client with a test bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name=settings.AWS_REGION)
        client.create_bucket(Bucket=settings.S3_BUCKET)
        yield client


def _image_bytes(fmt: str) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (16, 16), color=(200, 40, 90)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return _image_bytes("PNG")


@pytest.fixture
def jpeg_bytes():
    return _image_bytes("JPEG")


@pytest.fixture
def supabase_user():
    """Supabase mock that accepts any bearer token as user-1."""
    service = MagicMock()
    service.get_user_id.return_value = "user-1"
    return service
