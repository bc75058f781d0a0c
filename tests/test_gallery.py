import time

import numpy as np
import pytest

from attendance_engine.errors import ModelNotReady, PartialGalleryBuild
from attendance_engine.inference.descriptor import DescriptorExtractor
from attendance_engine.inference.gallery import GalleryBuilder, RosterMember

from conftest import FakeFaceBackend, FakePhotoStore, basis_embedding, make_photo


@pytest.fixture
def roster_setup(backend):
    photos = {}
    for index, name in enumerate(['s1', 's2', 's3']):
        photos[f'{name}.png'] = make_photo(index)
    backend.register_photo(photos['s1.png'], ((0, 10, 10, 0), basis_embedding(1)))
    # s2's photo has no detectable face
    backend.register_photo(photos['s3.png'], ((0, 10, 10, 0), basis_embedding(3)))
    roster = [RosterMember(name, (f'{name}.png',), display_name=name.upper()) for name in ['s1', 's2', 's3']]
    return FakePhotoStore(photos), roster


def test_partial_build_excludes_member_without_face(extractor, roster_setup):
    store, roster = roster_setup

    result = GalleryBuilder(extractor, store).build(roster)

    assert len(result.gallery) == 2
    assert result.gallery.identities() == ['s1', 's3']
    assert 's2' not in result.gallery
    assert [(e.identity, e.reason) for e in result.exclusions] == [('s2', 'no_face')]

    warning = result.partial_failure()
    assert isinstance(warning, PartialGalleryBuild)
    assert [e.identity for e in warning.exclusions] == ['s2']


def test_complete_build_has_no_warning(extractor, roster_setup):
    store, roster = roster_setup

    result = GalleryBuilder(extractor, store).build([roster[0], roster[2]])

    assert result.partial_failure() is None
    assert result.describe() == {'count': 2, 'excluded': []}


def test_hung_fetch_becomes_timeout_exclusion(extractor, roster_setup, release_event):
    store, roster = roster_setup
    store.hang['s1.png'] = release_event

    started = time.monotonic()
    result = GalleryBuilder(extractor, store, item_timeout=0.2, max_workers=3).build(roster)
    elapsed = time.monotonic() - started

    assert elapsed < 2
    assert result.gallery.identities() == ['s3']
    reasons = {e.identity: e.reason for e in result.exclusions}
    assert reasons == {'s1': 'timeout', 's2': 'no_face'}


def test_member_queued_behind_hung_fetch_gets_its_own_timeout(backend, extractor, release_event):
    photos = {'a.png': make_photo(30), 'b.png': make_photo(31)}
    backend.register_photo(photos['a.png'], ((0, 10, 10, 0), basis_embedding(0)))
    backend.register_photo(photos['b.png'], ((0, 10, 10, 0), basis_embedding(1)))
    store = FakePhotoStore(photos)
    store.hang['a.png'] = release_event

    result = GalleryBuilder(extractor, store, item_timeout=0.3, max_workers=1).build(
        [RosterMember('A', ('a.png',)), RosterMember('B', ('b.png',))]
    )

    assert result.gallery.identities() == ['B']
    assert [(e.identity, e.reason) for e in result.exclusions] == [('A', 'timeout')]


def test_missing_photo_is_fetch_failure(extractor):
    result = GalleryBuilder(extractor, FakePhotoStore()).build(
        [RosterMember('ghost', ('missing.png',)), RosterMember('nobody')]
    )

    reasons = {e.identity: e.reason for e in result.exclusions}
    assert reasons == {'ghost': 'fetch_failed', 'nobody': 'no_photo'}
    assert result.gallery.is_empty()


def test_multi_shot_member_keeps_every_successful_photo(backend, extractor):
    photos = {'a.png': make_photo(10), 'b.png': make_photo(11), 'c.png': make_photo(12)}
    backend.register_photo(photos['a.png'], ((0, 10, 10, 0), basis_embedding(0)))
    backend.register_photo(photos['c.png'], ((0, 10, 10, 0), basis_embedding(2)))

    result = GalleryBuilder(extractor, FakePhotoStore(photos)).build(
        [RosterMember('alice', ('a.png', 'b.png', 'c.png'))]
    )

    entry = result.gallery.entry('alice')
    assert len(entry.embeddings) == 2
    assert result.exclusions == []


def test_duplicate_roster_identity_keeps_first(backend, extractor):
    photo = make_photo(20)
    backend.register_photo(photo, ((0, 10, 10, 0), basis_embedding(0)))
    store = FakePhotoStore({'a.png': photo})

    result = GalleryBuilder(extractor, store).build(
        [RosterMember('alice', ('a.png',), 'First'), RosterMember('alice', ('a.png',), 'Second')]
    )

    assert len(result.gallery) == 1
    assert result.gallery.entry('alice').display_name == 'First'


def test_stored_descriptor_skips_photo_fetch(extractor):
    store = FakePhotoStore()
    member = RosterMember('alice', ('never-fetched.png',), stored_embedding=basis_embedding(7))

    result = GalleryBuilder(extractor, store, prefer_stored_descriptors=True).build([member])

    assert np.array_equal(result.gallery.entry('alice').embeddings[0], basis_embedding(7))


def test_build_requires_loaded_model(roster_setup):
    store, roster = roster_setup

    with pytest.raises(ModelNotReady):
        GalleryBuilder(DescriptorExtractor(backend=FakeFaceBackend()), store).build(roster)


def test_empty_roster_gives_empty_gallery(extractor):
    result = GalleryBuilder(extractor, FakePhotoStore()).build([])

    assert result.gallery.is_empty()
    assert result.exclusions == []
