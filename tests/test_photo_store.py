import io

import pytest
import requests
from PIL import Image

from attendance_engine.errors import PhotoStoreError
from services.photo_store import PhotoStore

from conftest import make_photo


def jpeg_bytes(seed=0):
    buffer = io.BytesIO()
    Image.open(io.BytesIO(make_photo(seed))).convert('RGB').save(buffer, format='JPEG', quality=95)
    return buffer.getvalue()


def test_store_fetch_delete(photo_store):
    photo = make_photo(1)

    ref = photo_store.store(photo, prefix='S1')

    assert ref.startswith('S1/S1_') and ref.endswith('.png')
    assert photo_store.exists(ref)
    assert photo_store.fetch(ref) == photo
    assert photo_store.delete(ref) is True
    assert photo_store.delete(ref) is False
    with pytest.raises(PhotoStoreError):
        photo_store.fetch(ref)


def test_jpeg_gets_jpg_extension(photo_store):
    assert photo_store.store(jpeg_bytes(), prefix='S2').endswith('.jpg')


def test_prefix_is_sanitised(photo_store):
    ref = photo_store.store(make_photo(2), prefix='../../etc')

    assert '..' not in ref
    assert photo_store.exists(ref)


@pytest.mark.parametrize('payload', [b'', b'x' * 10, b'not an image' * 200])
def test_invalid_payloads_are_rejected(photo_store, payload):
    with pytest.raises(PhotoStoreError):
        photo_store.validate(payload)


def test_oversized_image_is_rejected(tmp_path):
    store = PhotoStore(tmp_path, max_size=2048)

    with pytest.raises(PhotoStoreError):
        store.validate(make_photo(3))


def test_disallowed_format_is_rejected(tmp_path):
    store = PhotoStore(tmp_path, allowed_extensions={'jpg'})

    with pytest.raises(PhotoStoreError):
        store.validate(make_photo(4))
    assert store.validate(jpeg_bytes()) == 'jpg'


def test_refs_cannot_escape_the_store(photo_store):
    with pytest.raises(PhotoStoreError):
        photo_store.fetch('../outside.png')


class FakeResponse:
    def __init__(self, content, status=200):
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def test_remote_refs_are_downloaded_with_timeout(tmp_path):
    http = FakeHttp(FakeResponse(b'image-bytes'))
    store = PhotoStore(tmp_path, fetch_timeout=3, http_session=http)

    assert store.fetch('https://example.org/s1.jpg') == b'image-bytes'
    assert http.calls == [('https://example.org/s1.jpg', 3)]


@pytest.mark.parametrize('http', [
    FakeHttp(error=requests.Timeout('read timed out')),
    FakeHttp(FakeResponse(b'', status=404)),
])
def test_remote_failures_become_photo_store_errors(tmp_path, http):
    store = PhotoStore(tmp_path, http_session=http)

    with pytest.raises(PhotoStoreError):
        store.fetch('http://example.org/missing.jpg')
