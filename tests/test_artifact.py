from __future__ import annotations

import dataclasses

import pytest

from combine_archive import ArtifactInfo, ArtifactIterator, UnsupportedOperationError


def test_artifact_info_is_value_object() -> None:
    a = ArtifactInfo("/models/model1.xml", "application/xml")
    b = ArtifactInfo("/models/model1.xml", "application/xml")

    assert a == b
    assert hash(a) == hash(b)
    assert a.to_dict() == {"path": "/models/model1.xml", "content_type": "application/xml"}


def test_artifact_info_is_immutable() -> None:
    info = ArtifactInfo("/a.txt", "text/plain")
    with pytest.raises(dataclasses.FrozenInstanceError):
        info.path = "/b.txt"  # type: ignore[misc]


@pytest.mark.parametrize("path", ["", None, 42])
def test_artifact_info_rejects_empty_path(path: object) -> None:
    with pytest.raises(ValueError):
        ArtifactInfo(path, "text/plain")  # type: ignore[arg-type]


def test_iterator_yields_snapshot_in_order() -> None:
    entries = [("/a.txt", "text/plain"), ("/b.xml", "application/xml")]
    iterator = ArtifactIterator(entries)
    entries.clear()

    assert iterator.__length_hint__() == 2
    assert list(iterator) == [
        ArtifactInfo("/a.txt", "text/plain"),
        ArtifactInfo("/b.xml", "application/xml"),
    ]
    assert list(iterator) == []


def test_iterator_is_finite() -> None:
    iterator = ArtifactIterator([("/a.txt", "text/plain")])
    next(iterator)
    with pytest.raises(StopIteration):
        next(iterator)


def test_iterator_remove_is_unsupported() -> None:
    iterator = ArtifactIterator([("/a.txt", "text/plain")])
    next(iterator)
    with pytest.raises(UnsupportedOperationError):
        iterator.remove()
