"""Temporary local copies of uploaded attachments.

Multipart files are spooled to disk before the streaming response starts,
because Starlette closes request files once the endpoint returns. The relay
owns the copies for the rest of the request and removes them on every exit
path.
"""

import logging
import mimetypes
import tempfile
from pathlib import Path

from pydantic import BaseModel
from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)


class LocalUpload(BaseModel):
    """An attachment waiting on local disk to be sent upstream.

    Attributes:
        path: Location of the temporary copy.
        filename: Original client-side filename (keeps the extension upstream).
        content_type: MIME type reported by the client, or guessed from the name.
    """

    path: Path
    filename: str
    content_type: str | None = None

    @property
    def is_image(self) -> bool:
        return bool(self.content_type and self.content_type.startswith("image/"))


async def spool_upload(upload_dir: str | Path, file: UploadFile) -> LocalUpload:
    """Copy an uploaded file into a uniquely named temporary file.

    Args:
        upload_dir: Directory for temporary copies (created if missing).
        file: The multipart upload.

    Returns:
        LocalUpload pointing at the copy.
    """
    directory = Path(upload_dir)
    directory.mkdir(parents=True, exist_ok=True)

    filename = Path(file.filename or "upload.txt").name
    content_type = file.content_type
    if not content_type or content_type == "application/octet-stream":
        content_type = mimetypes.guess_type(filename)[0] or content_type

    content = await file.read()
    with tempfile.NamedTemporaryFile(dir=directory, prefix="upload-", delete=False) as tmp:
        tmp.write(content)

    logger.debug(f"Spooled upload {filename} ({len(content)} bytes) to {tmp.name}")
    return LocalUpload(path=Path(tmp.name), filename=filename, content_type=content_type)


def discard_uploads(uploads: list[LocalUpload]) -> None:
    """Delete temporary copies. Never raises."""
    for upload in uploads:
        try:
            upload.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove temporary upload {upload.path}: {e}")
