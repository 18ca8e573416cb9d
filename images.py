# Image storage for post images and avatars
import logging
import os
import uuid

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from errors import ValidationFailure

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp'}


class LocalImageStore:
    """Saves uploaded images under a folder and hands back their public URL."""

    def __init__(self, folder, url_prefix='/uploads'):
        self.folder = folder
        self.url_prefix = url_prefix.rstrip('/')

    def save(self, upload, kind='posts'):
        filename = secure_filename(upload.filename or '')
        ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationFailure("Image must be one of: " + ", ".join(sorted(ALLOWED_EXTENSIONS)))

        name = f"{kind}-{uuid.uuid4().hex}.{ext}"
        os.makedirs(self.folder, exist_ok=True)
        upload.save(os.path.join(self.folder, name))
        logger.info("Stored image %s", name)
        return f"{self.url_prefix}/{name}"

    def resolve(self, upload=None, url=None, kind='posts'):
        """Pick the image reference from a file upload or a plain URL field.

        Returns None when neither was sent, so callers can tell "unchanged"
        from "cleared" (an empty URL string).
        """
        if isinstance(upload, FileStorage) and upload.filename:
            return self.save(upload, kind)
        if url is not None:
            if not isinstance(url, str) or len(url) > 500:
                raise ValidationFailure("Invalid image reference")
            return url.strip()
        return None
