# Overview: Private photo storage with signed, time-limited URLs.

"""
Photo Storage

WHY: Custody and return photos show identity documents and client
property. They are written outside any static folder and can only be read
through a URL carrying an itsdangerous signature of the stored path.

- Root: PRIVATE_STORAGE_PATH, else <instance_path>/private
- Stored paths are relative, "/"-separated, never contain ".." parts
- Signatures expire after PHOTO_URL_MAX_AGE seconds
- Files written by a transaction that rolls back are deleted again
"""

from __future__ import annotations

import os
import uuid

from flask import current_app, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import event
from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage

from ..extensions import db
from ..validation import ServiceError, AccessDeniedError, NotFoundError

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "bmp"}
MAX_PHOTO_BYTES = 5 * 1024 * 1024
SIGNING_SALT = "private-photo"

# Session.info key listing files written since the last commit
UNCOMMITTED_PHOTOS = "uncommitted_photos"


class PhotoError(ServiceError):
    """Raised when an uploaded photo is rejected."""
    pass


def storage_root() -> str:
    root = current_app.config.get("PRIVATE_STORAGE_PATH") or os.path.join(current_app.instance_path, "private")
    os.makedirs(root, exist_ok=True)
    return root


def clean_path(path: str) -> str:
    """Drop empty, '.' and '..' components so a path can't leave the root."""
    parts = str(path or "").replace("\\", "/").split("/")
    return "/".join(part for part in parts if part not in ("", ".", ".."))


def _extension(filename: str | None) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def validate_upload(upload: FileStorage, field: str) -> None:
    ext = _extension(upload.filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise PhotoError(
            "The given data was invalid.",
            {field: [f"The photo must be a file of type: {', '.join(sorted(ALLOWED_EXTENSIONS))}."]},
        )
    upload.stream.seek(0, os.SEEK_END)
    size = upload.stream.tell()
    upload.stream.seek(0)
    if size > MAX_PHOTO_BYTES:
        raise PhotoError("The given data was invalid.", {field: ["The photo may not be greater than 5 MB."]})


def save_photo(upload: FileStorage, folder: str, *, field: str = "photos") -> str:
    """
    Store an upload under <root>/<folder>/ with a random name.

    Returns the relative path to keep in the database.
    """
    validate_upload(upload, field)
    folder = clean_path(folder)
    relative = f"{folder}/{uuid.uuid4().hex}.{_extension(upload.filename)}"
    absolute = os.path.join(storage_root(), *relative.split("/"))
    os.makedirs(os.path.dirname(absolute), exist_ok=True)
    upload.save(absolute)
    db.session.info.setdefault(UNCOMMITTED_PHOTOS, []).append(absolute)
    return relative


@event.listens_for(Session, "after_commit")
def _keep_committed_photos(session):
    session.info.pop(UNCOMMITTED_PHOTOS, None)


@event.listens_for(Session, "after_soft_rollback")
def _discard_uncommitted_photos(session, previous_transaction):
    for absolute in session.info.pop(UNCOMMITTED_PHOTOS, []):
        try:
            os.remove(absolute)
        except FileNotFoundError:
            continue


def absolute_path(path: str) -> str:
    relative = clean_path(path)
    absolute = os.path.join(storage_root(), *relative.split("/"))
    if not os.path.isfile(absolute):
        raise NotFoundError("Photo not found")
    return absolute


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=SIGNING_SALT)


def sign(path: str) -> str:
    return _serializer().dumps(clean_path(path))


def signed_url(path: str) -> str:
    relative = clean_path(path)
    return url_for("custody.serve_photo", path=relative, signature=sign(relative))


def verify(path: str, signature: str | None) -> str:
    """
    Check that `signature` was issued for `path` and has not expired.

    Returns the cleaned path; AccessDeniedError (403) otherwise.
    """
    relative = clean_path(path)
    if not signature:
        raise AccessDeniedError("Invalid signature.")
    try:
        signed_path = _serializer().loads(signature, max_age=current_app.config.get("PHOTO_URL_MAX_AGE", 1800))
    except SignatureExpired:
        raise AccessDeniedError("Signature expired.")
    except BadSignature:
        raise AccessDeniedError("Invalid signature.")
    if signed_path != relative:
        raise AccessDeniedError("Invalid signature.")
    return relative
