import io
import threading
import time

import numpy as np
import pytest
from PIL import Image

from attendance_engine.errors import CameraUnavailable, PhotoStoreError
from attendance_engine.inference.descriptor import DescriptorExtractor
from attendance_engine.vision.camera_manager import CameraManager
from database import DatabaseManager
from services.photo_store import PhotoStore

EMBEDDING_SIZE = 128


def basis_embedding(index, scale=1.0):
    vector = np.zeros(EMBEDDING_SIZE)
    vector[index] = scale
    return vector


def nudged(embedding, index, amount):
    vector = np.array(embedding, dtype=np.float64)
    vector[index] += amount
    return vector


def make_photo(seed, size=64):
    """PNG bytes of random noise; distinct per seed and over 1 KB."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 255, (size, size, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format='PNG')
    return buffer.getvalue()


def make_frame(seed, size=8):
    """BGR frame as OpenCV would return it."""
    rng = np.random.default_rng(1000 + seed)
    return rng.integers(0, 255, (size, size, 3), dtype=np.uint8)


def rgb_key(bgr):
    return np.ascontiguousarray(bgr[..., ::-1]).tobytes()


class FakeFaceBackend:
    """Stands in for the face_recognition module.

    Images are identified by their raw bytes; each registered image carries
    a list of (location, embedding) pairs.
    """

    def __init__(self):
        self.faces = {}
        self.blockers = {}
        self.errors = {}
        self.locate_calls = 0

    def register_photo(self, photo_bytes, *faces):
        self.faces[bytes(photo_bytes)] = [(tuple(loc), np.asarray(emb)) for loc, emb in faces]

    def register_frame(self, bgr, *faces):
        self.faces[rgb_key(bgr)] = [(tuple(loc), np.asarray(emb)) for loc, emb in faces]

    def block_frame(self, bgr, event):
        self.blockers[rgb_key(bgr)] = event

    def fail_frame(self, bgr, exc):
        self.errors[rgb_key(bgr)] = exc

    def load_image_file(self, file):
        if hasattr(file, 'read'):
            data = file.read()
        else:
            with open(file, 'rb') as fp:
                data = fp.read()
        return np.frombuffer(data, dtype=np.uint8)

    def _key(self, image):
        return np.ascontiguousarray(image).tobytes()

    def face_locations(self, image, model='hog'):
        self.locate_calls += 1
        key = self._key(image)
        if key in self.errors:
            raise self.errors[key]
        blocker = self.blockers.get(key)
        if blocker is not None:
            blocker.wait(5)
        return [loc for loc, _ in self.faces.get(key, [])]

    def face_encodings(self, image, known_face_locations=None, num_jitters=1):
        by_location = dict(self.faces.get(self._key(image), []))
        return [by_location[tuple(loc)] for loc in known_face_locations]


class FakeCapture:
    """cv2.VideoCapture double; repeats the last frame once the script ends."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.opened = True
        self.released = False
        self.reads = 0

    def isOpened(self):
        return self.opened and not self.released

    def set(self, prop, value):
        return True

    def get(self, prop):
        return 0

    def read(self):
        self.reads += 1
        if not self.frames:
            return False, None
        frame = self.frames.pop(0) if len(self.frames) > 1 else self.frames[0]
        if frame is None:
            return False, None
        return True, frame

    def release(self):
        self.released = True

    def disconnect(self):
        self.opened = False


class FakeCameraProvider:
    def __init__(self, frames=(), fail=False):
        self.frames = list(frames)
        self.fail = fail
        self.captures = []

    def open(self, index):
        if self.fail:
            raise CameraUnavailable(f"Permission denied for camera {index}")
        capture = FakeCapture(self.frames)
        self.captures.append(capture)
        return capture

    @property
    def last(self):
        return self.captures[-1]


class FakePhotoStore:
    def __init__(self, photos=None):
        self.photos = dict(photos or {})
        self.hang = {}
        self.deleted = []

    def fetch(self, ref):
        event = self.hang.get(ref)
        if event is not None:
            event.wait(5)
        if ref not in self.photos:
            raise PhotoStoreError(f"{ref} not found")
        return self.photos[ref]

    def store(self, image_bytes, prefix=None):
        ref = f"{prefix}/{len(self.photos)}.png"
        self.photos[ref] = image_bytes
        return ref

    def delete(self, ref):
        self.deleted.append(ref)
        return self.photos.pop(ref, None) is not None


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def backend():
    return FakeFaceBackend()


@pytest.fixture
def extractor(backend):
    extractor = DescriptorExtractor(backend=backend)
    extractor.load_model()
    return extractor


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(tmp_path / 'attendance.db')


@pytest.fixture
def photo_store(tmp_path):
    return PhotoStore(tmp_path / 'photos', fetch_timeout=1)


@pytest.fixture
def camera_factory():
    def factory(provider):
        return CameraManager(index=0, provider=provider, warmup_frames=0, buffer_size=None)
    return factory


@pytest.fixture
def release_event():
    event = threading.Event()
    yield event
    event.set()
