"""Maps an ordered photo list onto the template's fixed, numbered photo slots."""

import logging
from collections.abc import Sequence

from app.core.exceptions import TooManyPhotos
from app.models.report_models import PhotoAttachment
from app.models.report_models import SlotBinding

logger = logging.getLogger(__name__)


def photo_reference(index: int, photo: PhotoAttachment) -> str:
    """Text shown in place of the image when photos are not embedded inline."""
    reference = f"[Photo {index}: {photo.original_filename}]"
    if photo.url:
        reference += f" {photo.url}"
    return reference


def resolve_photo_slots(photos: Sequence[PhotoAttachment], max_slots: int) -> dict[int, SlotBinding]:
    """Bind ``photos`` to slots ``1..max_slots`` in order.

    Slot ``i`` is bound to ``photos[i - 1]`` when it exists; every other slot
    is returned with ``exists=False`` and no data. The function is pure, so
    calling it twice with the same input yields equal bindings.

    Raises:
        TooManyPhotos: more photos than slots. Truncation is never implicit;
            use :func:`truncate_photos` first if that is the desired policy.
    """
    if max_slots < 0:
        raise ValueError("max_slots must be non-negative")
    if len(photos) > max_slots:
        raise TooManyPhotos(len(photos), max_slots)

    bindings: dict[int, SlotBinding] = {}
    for index in range(1, max_slots + 1):
        if index <= len(photos):
            photo = photos[index - 1]
            bindings[index] = SlotBinding(
                index=index,
                exists=True,
                image=photo.content,
                caption=photo.caption,
                filename=photo.original_filename,
                reference=photo_reference(index, photo),
            )
        else:
            bindings[index] = SlotBinding(index=index, exists=False)
    return bindings


def truncate_photos(
    photos: Sequence[PhotoAttachment], max_slots: int
) -> tuple[list[PhotoAttachment], int]:
    """Keep the first ``max_slots`` photos. Returns the kept photos and how many were dropped."""
    kept = list(photos[:max_slots])
    dropped = len(photos) - len(kept)
    if dropped:
        logger.warning("Truncating photo list: keeping %d of %d photos", len(kept), len(photos))
    return kept, dropped
