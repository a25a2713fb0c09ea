import pytest

from app.core.exceptions import TooManyPhotos
from app.models.report_models import PhotoAttachment
from app.services.photo_slots import photo_reference
from app.services.photo_slots import resolve_photo_slots
from app.services.photo_slots import truncate_photos


def test_resolve_binds_photos_in_order(make_photos):
    photos = make_photos(3)

    bindings = resolve_photo_slots(photos, 20)

    assert sorted(bindings) == list(range(1, 21))
    for i in (1, 2, 3):
        assert bindings[i].exists is True
        assert bindings[i].filename == f"photo_{i}.png"
        assert bindings[i].caption == f"Caption {i}"
        assert bindings[i].image == photos[i - 1].content
    for i in range(4, 21):
        assert bindings[i].exists is False
        assert bindings[i].image is None
        assert bindings[i].caption == ""
        assert bindings[i].filename == ""


def test_resolve_with_no_photos_marks_every_slot_absent():
    bindings = resolve_photo_slots([], 20)
    assert len(bindings) == 20
    assert not any(b.exists for b in bindings.values())


def test_resolve_is_idempotent(make_photos):
    photos = make_photos(5)
    assert resolve_photo_slots(photos, 20) == resolve_photo_slots(photos, 20)


def test_resolve_exactly_max_slots(make_photos):
    bindings = resolve_photo_slots(make_photos(20), 20)
    assert all(b.exists for b in bindings.values())


def test_resolve_rejects_more_photos_than_slots(make_photos):
    with pytest.raises(TooManyPhotos) as exc:
        resolve_photo_slots(make_photos(21), 20)
    assert exc.value.photo_count == 21
    assert exc.value.max_slots == 20
    assert exc.value.kind == "too_many_photos"


def test_resolve_rejects_negative_slot_count():
    with pytest.raises(ValueError):
        resolve_photo_slots([], -1)


def test_truncate_keeps_leading_photos(make_photos):
    photos = make_photos(23)
    kept, dropped = truncate_photos(photos, 20)
    assert len(kept) == 20
    assert dropped == 3
    assert kept[-1].original_filename == "photo_20.png"


def test_photo_reference_includes_url_when_known():
    photo = PhotoAttachment(original_filename="roof.jpg", url="https://cdn.example.com/roof.jpg")
    assert photo_reference(2, photo) == "[Photo 2: roof.jpg] https://cdn.example.com/roof.jpg"
    assert photo_reference(1, PhotoAttachment(original_filename="a.jpg")) == "[Photo 1: a.jpg]"
