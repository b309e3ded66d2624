"""
Diecut Catalog — Service Layer.

Business logic for diecut master records:
    - create with a user-assigned id (duplicate → ConflictError)
    - read only ACTIVE rows
    - partial update of whitelisted attributes
    - soft delete (status → INACTIVE); serial numbers are left untouched
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from toolroom.core.exceptions import ConflictError, NotFoundError, ValidationError
from toolroom.models import db
from toolroom.models.diecut import Diecut
from toolroom.models.lifecycle import STATUS_ACTIVE
from toolroom.services import image_store
from toolroom.utils.helpers import require_fields, storage_guard

logger = logging.getLogger(__name__)

# Attributes a caller may set on create/update
EDITABLE_FIELDS = (
    "diecut_name",
    "diecut_type",
    "diecut_desc",
    "image_path",
    "blank_size_x",
    "blank_size_y",
)


def _clean_attributes(attributes: dict) -> dict:
    return {k: v for k, v in (attributes or {}).items() if k in EDITABLE_FIELDS}


def list_active() -> list[Diecut]:
    """Return every ACTIVE diecut ordered by id."""
    with storage_guard("list_diecuts"):
        return list(
            db.session.execute(
                select(Diecut)
                .where(Diecut.status == STATUS_ACTIVE)
                .order_by(Diecut.diecut_id)
            ).scalars()
        )


def get_by_id(diecut_id: str) -> Diecut:
    """Fetch an ACTIVE diecut or raise NotFoundError."""
    require_fields(diecutId=diecut_id)
    with storage_guard("get_diecut", diecut_id=diecut_id):
        diecut = db.session.execute(
            select(Diecut).where(
                Diecut.diecut_id == diecut_id,
                Diecut.status == STATUS_ACTIVE,
            )
        ).scalar_one_or_none()
    if diecut is None:
        raise NotFoundError(resource="Diecut", resource_id=diecut_id)
    return diecut


def create(diecut_id: str, attributes: dict, creator_id: str | None, image=None) -> Diecut:
    """Create a catalog entry. Status is always ACTIVE on creation.

    Raises:
        ValidationError: diecut_id or diecut_name missing.
        ConflictError: a row with this id exists (ACTIVE or INACTIVE).
    """
    attrs = _clean_attributes(attributes)
    require_fields(diecutId=diecut_id, diecutName=attrs.get("diecut_name"))
    if not isinstance(diecut_id, str):
        raise ValidationError("diecutId must be a string", details={"diecutId": "type"})
    diecut_id = diecut_id.strip()

    with storage_guard("create_diecut", diecut_id=diecut_id):
        if db.session.get(Diecut, diecut_id) is not None:
            raise ConflictError(resource="Diecut", field="diecut_id", value=diecut_id)

        if image is not None:
            attrs["image_path"] = image_store.save_image(image, diecut_id)

        diecut = Diecut(
            diecut_id=diecut_id,
            created_by=creator_id,
            updated_by=creator_id,
            **attrs,
        )
        diecut.status = STATUS_ACTIVE
        db.session.add(diecut)
        db.session.commit()

    logger.info("Diecut created", extra={"diecut_id": diecut_id, "user_id": creator_id})
    return diecut


def update(diecut_id: str, partial: dict, updater_id: str | None, image=None) -> Diecut:
    """Merge the supplied attributes onto an ACTIVE diecut.

    Only keys present in ``partial`` are written; ``updated_at`` is always
    refreshed. A new image replaces (and deletes) the previous file.
    """
    diecut = get_by_id(diecut_id)
    attrs = _clean_attributes(partial)
    if "diecut_name" in attrs and not (attrs["diecut_name"] or "").strip():
        raise ValidationError("diecutName cannot be blank", details={"diecutName": "blank"})

    old_image = diecut.image_path
    with storage_guard("update_diecut", diecut_id=diecut_id):
        if image is not None:
            attrs["image_path"] = image_store.save_image(image, diecut_id)
        for key, value in attrs.items():
            setattr(diecut, key, value)
        diecut.updated_by = updater_id
        diecut.updated_at = datetime.now(timezone.utc)
        db.session.commit()

    if image is not None and old_image and old_image != diecut.image_path:
        image_store.remove_image(old_image)

    logger.info(
        "Diecut updated",
        extra={"diecut_id": diecut_id, "user_id": updater_id, "fields": sorted(attrs)},
    )
    return diecut


def soft_delete(diecut_id: str, updater_id: str | None) -> None:
    """Set an ACTIVE diecut to INACTIVE. Its serial numbers stay queryable."""
    diecut = get_by_id(diecut_id)
    with storage_guard("delete_diecut", diecut_id=diecut_id):
        diecut.soft_delete(updated_by=updater_id)
        db.session.commit()
    logger.info("Diecut deactivated", extra={"diecut_id": diecut_id, "user_id": updater_id})
