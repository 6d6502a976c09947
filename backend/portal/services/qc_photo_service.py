# Overview: QC photo metadata, storage backend, and the time-boxed retention sweep.

from __future__ import annotations

import os
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import QcPhoto, QcInspection
from ..time_utils import utcnow, age_in_days
from ..validation import ValidationError
"""
QC Photo Retention

- Every photo is timestamped at creation (created_at, UTC-naive).
- The sweep hard-deletes the storage object, then the metadata row, for any
  photo older than QC_PHOTO_RETENTION_DAYS. Destructive, not reversible.
- A storage deletion failure is logged and counted; the row is kept so the
  next sweep retries it.
- retention_warning() is advisory for the UI (age in [warning, retention)).
"""


class PhotoStorage:
    """Filesystem-backed photo store rooted at base_dir."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def path_for(self, file_path: str) -> str:
        full = os.path.abspath(os.path.join(self.base_dir, file_path))
        root = os.path.abspath(self.base_dir)
        if os.path.commonpath([full, root]) != root:
            raise ValidationError("file_path escapes the photo storage directory")
        return full

    def save(self, file_path: str, data: bytes) -> str:
        full = self.path_for(file_path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as fh:
            fh.write(data)
        return file_path

    def exists(self, file_path: str) -> bool:
        return os.path.exists(self.path_for(file_path))

    def delete(self, file_path: str) -> None:
        """Remove the object. An already-missing object counts as deleted."""
        try:
            os.remove(self.path_for(file_path))
        except FileNotFoundError:
            pass


def get_storage() -> PhotoStorage:
    return PhotoStorage(current_app.config["QC_PHOTO_STORAGE_DIR"])


def register_photo(
    *,
    client_id: int,
    file_path: str,
    asn_id: int | None = None,
    asn_line_id: int | None = None,
    return_line_id: int | None = None,
    uploaded_by: int | None = None,
    created_at: datetime | None = None,
) -> QcPhoto:
    """Record photo metadata. Flushes, does not commit."""
    if not file_path or not str(file_path).strip():
        raise ValidationError("photo file_path is required")

    photo = QcPhoto(
        client_id=client_id,
        file_path=str(file_path).strip(),
        asn_id=asn_id,
        asn_line_id=asn_line_id,
        return_line_id=return_line_id,
        uploaded_by=uploaded_by,
        created_at=created_at or utcnow(),
    )
    db.session.add(photo)
    db.session.flush()
    return photo


def photo_age_days(photo: QcPhoto, now: datetime | None = None) -> float:
    return age_in_days(photo.created_at, now)


def retention_warning(photo: QcPhoto, now: datetime | None = None) -> bool:
    """True while the photo is close to (but not past) its deletion date."""
    age = photo_age_days(photo, now)
    warning_days = current_app.config["QC_PHOTO_WARNING_DAYS"]
    retention_days = current_app.config["QC_PHOTO_RETENTION_DAYS"]
    return warning_days <= age < retention_days


def photo_to_dict(photo: QcPhoto, now: datetime | None = None) -> dict:
    data = photo.to_dict()
    data["age_days"] = round(photo_age_days(photo, now), 2)
    data["retention_warning"] = retention_warning(photo, now)
    return data


def sweep_expired_photos(
    *,
    storage: PhotoStorage | None = None,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Delete photos older than the retention period.

    Each photo is committed on its own so the sweep can run alongside live
    traffic and a failure part-way through keeps earlier deletions.
    """
    storage = storage or get_storage()
    if retention_days is None:
        retention_days = current_app.config["QC_PHOTO_RETENTION_DAYS"]
    cutoff = (now or utcnow()) - timedelta(days=retention_days)

    expired = (
        db.session.query(QcPhoto)
        .filter(QcPhoto.created_at < cutoff)
        .order_by(QcPhoto.id.asc())
        .all()
    )

    stats = {"scanned": len(expired), "deleted": 0, "failed": 0}
    for photo in expired:
        try:
            storage.delete(photo.file_path)
        except (OSError, ValidationError) as e:
            current_app.logger.warning("Failed to delete QC photo %s (%s): %s", photo.id, photo.file_path, e)
            stats["failed"] += 1
            continue

        db.session.query(QcInspection).filter_by(photo_id=photo.id).update(
            {"photo_id": None}, synchronize_session=False
        )
        db.session.delete(photo)
        db.session.commit()
        stats["deleted"] += 1

    current_app.logger.info(
        "QC photo sweep: scanned=%s deleted=%s failed=%s (cutoff %s)",
        stats["scanned"],
        stats["deleted"],
        stats["failed"],
        cutoff.isoformat(),
    )
    return stats
