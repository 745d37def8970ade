import pytest

from bucketproxy.backend_clients import MAX_ATTEMPTS, create_client
from bucketproxy.validation import (
    DEFAULT_CONTENT_TYPE,
    MAX_KEY_LENGTH,
    guess_content_type,
    is_valid_key,
    sanitize_key,
)


@pytest.mark.parametrize("key", ["a.txt", "dir/", "photos/2024/cat.png", "x" * MAX_KEY_LENGTH])
def test_valid_keys(key):
    assert is_valid_key(key)


@pytest.mark.parametrize("key", ["", "/etc/passwd", "x" * (MAX_KEY_LENGTH + 1)])
def test_invalid_keys(key):
    assert not is_valid_key(key)


def test_sanitize_key_trims_slashes_and_whitespace():
    assert sanitize_key("  /notes/today.txt/ ") == "notes/today.txt"
    assert sanitize_key("plain.txt") == "plain.txt"


def test_guess_content_type():
    assert guess_content_type("report.pdf") == "application/pdf"
    assert guess_content_type("blob.unknownext") == DEFAULT_CONTENT_TYPE


def test_storage_client_uses_path_style_and_bounded_timeouts(make_settings):
    client = create_client(
        make_settings(storage_connect_timeout=3.0, storage_read_timeout=20.0)
    )
    config = client.meta.config

    assert client.meta.endpoint_url == "http://storage.local"
    assert client.meta.region_name == "us-east-1"
    assert config.connect_timeout == 3.0
    assert config.read_timeout == 20.0
    assert config.retries["max_attempts"] == MAX_ATTEMPTS
    assert config.s3["addressing_style"] == "path"
