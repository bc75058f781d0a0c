import math

import numpy as np
import pytest

from attendance_engine.embeddings import as_embedding, embedding_from_blob, embedding_to_blob
from attendance_engine.errors import InvalidEmbedding
from attendance_engine.inference.gallery import FaceGallery, GalleryEntry
from attendance_engine.inference.matcher import Matched, Matcher, Unknown, is_match

from conftest import basis_embedding, nudged


def gallery_of(*pairs):
    return FaceGallery(
        GalleryEntry(identity, tuple(as_embedding(e) for e in embeddings), display_name=identity.title())
        for identity, embeddings in pairs
    )


def test_distance_equal_to_threshold_matches():
    reference = basis_embedding(0)
    probe = nudged(nudged(reference, 0, 0.375), 1, 0.5)  # distance exactly 0.625
    gallery = gallery_of(('alice', [reference]))

    result = Matcher(threshold=0.625).match(probe, gallery)

    assert isinstance(result, Matched)
    assert result.identity == 'alice'
    assert result.distance == 0.625
    assert result.display_name == 'Alice'


def test_distance_just_above_threshold_is_unknown():
    reference = basis_embedding(0)
    probe = nudged(nudged(reference, 0, 0.375), 1, 0.5)
    gallery = gallery_of(('alice', [reference]))

    result = Matcher(threshold=float(np.nextafter(0.625, 0))).match(probe, gallery)

    assert isinstance(result, Unknown)
    assert result.distance == 0.625
    assert not is_match(result)


def test_closest_identity_wins():
    gallery = gallery_of(('alice', [basis_embedding(0)]), ('bob', [basis_embedding(1)]))
    probe = nudged(basis_embedding(1), 2, 0.1)

    result = Matcher().match(probe, gallery)

    assert isinstance(result, Matched)
    assert result.identity == 'bob'
    assert result.distance == pytest.approx(0.1)


def test_last_identity_in_a_larger_gallery_can_win():
    gallery = gallery_of(
        ('alice', [basis_embedding(0)]),
        ('bob', [basis_embedding(1)]),
        ('carol', [basis_embedding(2), basis_embedding(3)]),
    )

    result = Matcher().match(nudged(basis_embedding(3), 4, 0.05), gallery)

    assert result.identity == 'carol'
    assert result.display_name == 'Carol'
    assert result.distance == pytest.approx(0.05)


def test_multi_shot_entry_uses_its_closest_reference():
    gallery = gallery_of(
        ('alice', [basis_embedding(0), basis_embedding(5)]),
        ('bob', [nudged(basis_embedding(5), 6, 0.3)]),
    )

    result = Matcher().match(basis_embedding(5), gallery)

    assert result.identity == 'alice'
    assert result.distance == 0.0


def test_tie_goes_to_first_identity_in_gallery_order():
    probe = basis_embedding(0)
    gallery = gallery_of(
        ('carol', [nudged(probe, 1, 0.2)]),
        ('dave', [nudged(probe, 2, 0.2)]),
    )

    assert Matcher().match(probe, gallery).identity == 'carol'


def test_empty_gallery_is_unknown():
    result = Matcher().match(basis_embedding(0), FaceGallery())

    assert isinstance(result, Unknown)
    assert math.isinf(result.distance)


@pytest.mark.parametrize('threshold', [0, -0.1, float('nan'), float('inf')])
def test_threshold_must_be_positive_and_finite(threshold):
    with pytest.raises(ValueError):
        Matcher(threshold)


def test_match_rejects_wrong_sized_probe():
    gallery = gallery_of(('alice', [basis_embedding(0)]))

    with pytest.raises(InvalidEmbedding):
        Matcher().match(np.zeros(64), gallery)


def test_as_embedding_validates_and_freezes():
    embedding = as_embedding([0.5] * 128)

    assert embedding.dtype == np.float64
    assert not embedding.flags.writeable
    with pytest.raises(InvalidEmbedding):
        as_embedding([0.5] * 127)
    with pytest.raises(InvalidEmbedding):
        as_embedding(np.zeros((2, 128)))
    with pytest.raises(InvalidEmbedding):
        as_embedding([float('nan')] + [0.0] * 127)
    with pytest.raises(InvalidEmbedding):
        as_embedding(None)


def test_blob_decoding_checks_length():
    embedding = as_embedding(basis_embedding(3))

    assert np.array_equal(embedding_from_blob(embedding_to_blob(embedding)), embedding)
    assert embedding_from_blob(None) is None
    with pytest.raises(InvalidEmbedding):
        embedding_from_blob(b'\x00' * 100)
