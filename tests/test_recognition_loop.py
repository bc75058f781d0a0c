import threading

import numpy as np
import pytest

from attendance_engine.embeddings import as_embedding
from attendance_engine.errors import (
    CameraUnavailable,
    EmptyGallery,
    ModelNotReady,
    PersistenceFailure,
    SessionStateError,
)
from attendance_engine.inference.descriptor import DescriptorExtractor
from attendance_engine.inference.gallery import FaceGallery, GalleryEntry
from attendance_engine.inference.matcher import Matcher
from attendance_engine.recognition.loop import LoopState, RecognitionLoop

from conftest import (
    FakeCameraProvider,
    FakeFaceBackend,
    basis_embedding,
    make_frame,
    nudged,
    wait_for,
)

FACE_A = (0, 4, 4, 0)
FACE_B = (4, 8, 8, 4)


@pytest.fixture
def gallery():
    return FaceGallery([
        GalleryEntry('alice', (as_embedding(basis_embedding(0)),), 'Alice'),
        GalleryEntry('bob', (as_embedding(basis_embedding(1)),), 'Bob'),
    ])


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_loop(extractor, gallery, events, camera_factory):
    loops = []

    def factory(provider, on_event=None, interval=60.0, **kwargs):
        loop = RecognitionLoop(
            camera=camera_factory(provider),
            extractor=kwargs.pop('extractor', extractor),
            matcher=Matcher(0.6),
            gallery=kwargs.pop('gallery', gallery),
            on_event=on_event or events.append,
            interval=interval,
            **kwargs,
        )
        loops.append(loop)
        return loop

    yield factory
    for loop in loops:
        loop.stop()


def test_same_student_over_many_ticks_emits_one_event(backend, make_loop, events):
    frame = make_frame(1)
    backend.register_frame(frame, (FACE_A, nudged(basis_embedding(0), 5, 0.1)))
    loop = make_loop(FakeCameraProvider([frame]))

    loop.start()
    for _ in range(10):
        loop.tick()

    assert [e.identity for e in events] == ['alice']
    assert events[0].display_name == 'Alice'
    assert events[0].frame_id == 'frame-1'
    assert loop.recognized() == {'alice'}
    assert loop.stats['ticks'] == 10


def test_two_faces_in_one_frame_emit_two_events(backend, make_loop, events):
    frame = make_frame(2)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)), (FACE_B, basis_embedding(1)))
    loop = make_loop(FakeCameraProvider([frame]))

    loop.start()
    emitted = loop.tick()

    assert sorted(e.identity for e in emitted) == ['alice', 'bob']
    assert len(events) == 2


def test_unknown_face_emits_nothing(backend, make_loop, events):
    frame = make_frame(3)
    backend.register_frame(frame, (FACE_A, basis_embedding(9)))
    loop = make_loop(FakeCameraProvider([frame]))

    loop.start()
    loop.tick()

    assert events == []
    assert loop.stats['faces'] == 1


def test_initial_recognized_identities_are_not_emitted_again(backend, make_loop, events):
    frame = make_frame(4)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)))
    loop = make_loop(FakeCameraProvider([frame]), initial_recognized=['alice'])

    loop.start()
    loop.tick()

    assert events == []


def test_start_without_model_stays_idle_and_releases_camera(make_loop):
    provider = FakeCameraProvider([make_frame(5)])
    loop = make_loop(provider, extractor=DescriptorExtractor(backend=FakeFaceBackend()))

    with pytest.raises(ModelNotReady):
        loop.start()

    assert loop.state is LoopState.IDLE
    assert provider.captures == []


def test_start_with_empty_gallery_raises(make_loop):
    provider = FakeCameraProvider([make_frame(5)])
    loop = make_loop(provider, gallery=FaceGallery())

    with pytest.raises(EmptyGallery):
        loop.start()

    assert loop.state is LoopState.IDLE
    assert provider.captures == []


def test_camera_permission_denied_leaves_loop_idle(make_loop):
    loop = make_loop(FakeCameraProvider(fail=True))

    with pytest.raises(CameraUnavailable):
        loop.start()

    assert loop.state is LoopState.IDLE


def test_start_twice_is_rejected(make_loop):
    loop = make_loop(FakeCameraProvider([make_frame(6)]))
    loop.start()

    with pytest.raises(SessionStateError):
        loop.start()


def test_missing_frame_is_skipped(backend, make_loop, events):
    frame = make_frame(7)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)))
    loop = make_loop(FakeCameraProvider([None, frame]))

    loop.start()
    assert loop.tick() == []
    assert [e.identity for e in loop.tick()] == ['alice']
    assert loop.stats['skipped_no_frame'] == 1


def test_detection_error_skips_only_that_frame(backend, make_loop, events):
    bad, good = make_frame(8), make_frame(9)
    backend.fail_frame(bad, RuntimeError('dlib exploded'))
    backend.register_frame(good, (FACE_A, basis_embedding(0)))
    loop = make_loop(FakeCameraProvider([bad, good]))

    loop.start()
    assert loop.tick() == []
    assert loop.tick()[0].identity == 'alice'
    assert loop.stats['frame_errors'] == 1
    assert loop.state is LoopState.RUNNING


def test_overlapping_tick_is_skipped(backend, make_loop, events, release_event):
    frame = make_frame(10)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)))
    backend.block_frame(frame, release_event)
    loop = make_loop(FakeCameraProvider([frame]))
    loop.start()

    worker = threading.Thread(target=loop.tick)
    worker.start()
    assert wait_for(lambda: backend.locate_calls == 1)

    assert loop.tick() == []
    assert loop.stats['skipped_overlap'] == 1

    release_event.set()
    worker.join(2)
    assert [e.identity for e in events] == ['alice']


def test_stats_from_concurrent_ticks_add_up(backend, make_loop):
    frame = make_frame(11)
    backend.register_frame(frame, (FACE_A, basis_embedding(9)))
    loop = make_loop(FakeCameraProvider([frame]))
    loop.start()

    def hammer():
        for _ in range(25):
            loop.tick()

    threads = [threading.Thread(target=hammer) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    stats = loop.stats
    assert stats['ticks'] + stats['skipped_overlap'] == 100
    assert stats['faces'] == stats['ticks']

    stats['ticks'] = -1
    assert loop.stats['ticks'] >= 0


def test_persistence_failure_allows_retry_on_next_sighting(backend, make_loop):
    frame = make_frame(11)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)))
    attempts = []

    def flaky(event):
        attempts.append(event.identity)
        if len(attempts) == 1:
            raise PersistenceFailure('database is locked')

    loop = make_loop(FakeCameraProvider([frame]), on_event=flaky)
    loop.start()

    assert loop.tick() == []
    assert loop.recognized() == frozenset()
    assert [e.identity for e in loop.tick()] == ['alice']
    assert loop.tick() == []
    assert attempts == ['alice', 'alice']


def test_camera_lost_mid_session_stops_and_releases(backend, make_loop):
    provider = FakeCameraProvider([make_frame(12)])
    loop = make_loop(provider)
    loop.start()

    provider.last.disconnect()
    loop.tick()

    assert loop.state is LoopState.STOPPED
    assert provider.last.released


def test_pause_keeps_recognized_set(backend, make_loop, events):
    frame = make_frame(13)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)))
    loop = make_loop(FakeCameraProvider([frame]))
    loop.start()
    loop.tick()

    loop.pause()
    assert loop.state is LoopState.PAUSED
    assert loop.tick() == []

    loop.resume()
    loop.tick()
    assert loop.state is LoopState.RUNNING
    assert [e.identity for e in events] == ['alice']


def test_invalid_transitions_raise(make_loop):
    loop = make_loop(FakeCameraProvider([make_frame(14)]))

    with pytest.raises(SessionStateError):
        loop.pause()
    loop.start()
    with pytest.raises(SessionStateError):
        loop.resume()


def test_stop_is_idempotent_and_releases_camera(make_loop):
    provider = FakeCameraProvider([make_frame(15)])
    loop = make_loop(provider)
    loop.start()

    loop.stop()
    loop.stop()

    assert loop.state is LoopState.STOPPED
    assert provider.last.released
    assert loop.recognized() == frozenset()
    with pytest.raises(SessionStateError):
        loop.start()


def test_context_manager_stops_on_error(make_loop):
    provider = FakeCameraProvider([make_frame(16)])
    loop = make_loop(provider)

    with pytest.raises(RuntimeError):
        with loop:
            raise RuntimeError('boom')

    assert loop.state is LoopState.STOPPED
    assert provider.last.released


def test_sampling_thread_ticks_on_its_own(backend, make_loop, events):
    frame = make_frame(17)
    backend.register_frame(frame, (FACE_A, basis_embedding(0)))
    loop = make_loop(FakeCameraProvider([frame]), interval=0.02)

    loop.start()

    assert wait_for(lambda: len(events) == 1)
    assert wait_for(lambda: loop.stats['ticks'] >= 3)
    loop.stop()
    ticks = loop.stats['ticks']
    assert wait_for(lambda: loop.stats['ticks'] == ticks, timeout=0.1)
    assert len(events) == 1


def test_interval_must_be_positive(extractor, gallery, camera_factory):
    with pytest.raises(ValueError):
        RecognitionLoop(
            camera=camera_factory(FakeCameraProvider()),
            extractor=extractor,
            matcher=Matcher(),
            gallery=gallery,
            on_event=lambda e: None,
            interval=0,
        )


def test_embedding_fixture_sanity():
    assert np.linalg.norm(basis_embedding(0) - basis_embedding(1)) > 0.6
