"""Blob store: attachment bytes in Supabase Storage (prod) or local disk (dev).

Supabase bucket: SUPABASE_STORAGE_BUCKET (must be created in Supabase dashboard).
Local fallback: UPLOAD_FOLDER, or instance/uploads/ when unset.

Keys look like ``<ticket_id>/<attachment_id><ext>``. Writes and reads raise
StorageError on failure; deletes are best-effort and never raise.
"""

import logging
import os

import requests
from flask import current_app

from bugflow.errors import StorageError

logger = logging.getLogger(__name__)

# Extensions for the allowed image types; anything else keeps no extension.
EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def _get_supabase_config():
    """Return Supabase storage config if available, else None."""
    url = current_app.config.get("SUPABASE_URL")
    key = current_app.config.get("SUPABASE_SERVICE_KEY")
    bucket = current_app.config.get("SUPABASE_STORAGE_BUCKET") or "ticket-attachments"

    if url and key:
        return {"url": url.rstrip("/"), "key": key, "bucket": bucket}
    return None


def _local_root():
    return current_app.config.get("UPLOAD_FOLDER") or os.path.join(
        current_app.instance_path, "uploads"
    )


def _local_path(key):
    root = os.path.abspath(_local_root())
    path = os.path.abspath(os.path.join(root, key))
    if not path.startswith(root + os.sep):
        raise StorageError()
    return path


def build_storage_key(ticket_id, attachment_id, filename, mime_type=None):
    ext = os.path.splitext(filename or "")[1].lower()
    if not ext or len(ext) > 10:
        ext = EXTENSIONS.get(mime_type, "")
    return f"{ticket_id}/{attachment_id}{ext}"


def put_blob(key, data, content_type):
    """Store bytes under key. Raises StorageError."""
    supabase = _get_supabase_config()
    if supabase:
        _put_supabase(supabase, key, data, content_type)
    else:
        _put_local(key, data)


def get_blob(key):
    """Return the bytes stored under key. Raises StorageError."""
    supabase = _get_supabase_config()
    if supabase:
        return _get_supabase(supabase, key)
    return _get_local(key)


def delete_blob(key):
    """Delete a blob. Best-effort, does not raise."""
    supabase = _get_supabase_config()
    if supabase:
        try:
            url = f"{supabase['url']}/storage/v1/object/{supabase['bucket']}/{key}"
            headers = {"Authorization": f"Bearer {supabase['key']}"}
            requests.delete(url, headers=headers, timeout=10)
        except requests.RequestException as e:
            logger.warning(f"Failed to delete from Supabase: {e}")
    else:
        try:
            os.remove(_local_path(key))
        except FileNotFoundError:
            pass
        except (OSError, StorageError) as e:
            logger.warning(f"Failed to delete local file {key}: {e}")


# ──────────────────────────────────────────────
# Supabase backend
# ──────────────────────────────────────────────

def _put_supabase(config, key, data, content_type):
    url = f"{config['url']}/storage/v1/object/{config['bucket']}/{key}"

    headers = {
        "Authorization": f"Bearer {config['key']}",
        "Content-Type": content_type,
        "x-upsert": "true",
    }

    try:
        resp = requests.post(url, headers=headers, data=data, timeout=30)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Supabase upload failed for {key}: {e}")
        raise StorageError() from e

    logger.info(f"Uploaded to Supabase: {key}")


def _get_supabase(config, key):
    url = f"{config['url']}/storage/v1/object/{config['bucket']}/{key}"
    headers = {"Authorization": f"Bearer {config['key']}"}

    try:
        resp = requests.get(url, headers=headers, timeout=30)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Supabase download failed for {key}: {e}")
        raise StorageError() from e
    return resp.content


# ──────────────────────────────────────────────
# Local filesystem backend
# ──────────────────────────────────────────────

def _put_local(key, data):
    filepath = _local_path(key)
    try:
        os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"Local upload failed for {key}: {e}")
        raise StorageError() from e

    logger.info(f"Uploaded locally: {filepath}")


def _get_local(key):
    filepath = _local_path(key)
    try:
        with open(filepath, "rb") as f:
            return f.read()
    except OSError as e:
        logger.error(f"Local read failed for {key}: {e}")
        raise StorageError() from e
