"""
File storage for chat attachments
Saves uploaded parts under <UPLOAD_ROOT>/uploads/attachments and removes them again
"""

import os
import re
import time
import uuid
import logging
import aiofiles
from fastapi import UploadFile

from .crud import NewAttachment
from .errors import InvalidRequest

logger = logging.getLogger(__name__)

# Configuration
UPLOAD_ROOT = os.getenv('UPLOAD_ROOT') or os.getcwd()
PUBLIC_PREFIX = '/uploads/'
ATTACHMENTS_SUBDIR = 'uploads/attachments'
MAX_ATTACHMENT_SIZE = int(os.getenv('MAX_ATTACHMENT_SIZE', str(10 * 1024 * 1024)))  # 10MB
CHUNK_SIZE = 64 * 1024


class AttachmentStorage:
    """Manages attachment files on local disk"""

    def __init__(self, root: str = UPLOAD_ROOT, max_size: int = MAX_ATTACHMENT_SIZE):
        self.root = os.path.abspath(root)
        self.max_size = max_size
        self.upload_dir = os.path.join(self.root, ATTACHMENTS_SUBDIR)
        os.makedirs(self.upload_dir, exist_ok=True)

    @property
    def uploads_path(self) -> str:
        return os.path.join(self.root, 'uploads')

    @staticmethod
    def generate_filename(original_filename: str) -> str:
        """Timestamped name with whitespace and symbols stripped, safe for URLs"""
        base, ext = os.path.splitext(os.path.basename(original_filename or ''))
        base = re.sub(r'[^a-z0-9]', '', base.lower()) or 'file'
        ext = re.sub(r'[^a-z0-9.]', '', ext.lower())
        return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}_{base}{ext}"

    def path_for_url(self, file_url: str):
        """Local path of a public /uploads/ url, None if it points elsewhere"""
        if not file_url or not file_url.startswith(PUBLIC_PREFIX):
            return None
        path = os.path.abspath(os.path.join(self.root, file_url.lstrip('/')))
        if not path.startswith(self.uploads_path + os.sep):
            return None
        return path

    async def save(self, file: UploadFile) -> NewAttachment:
        filename = self.generate_filename(file.filename)
        file_path = os.path.join(self.upload_dir, filename)
        written = 0
        try:
            async with aiofiles.open(file_path, 'wb') as f:
                while True:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_size:
                        raise InvalidRequest(f"Attachment too large. Max size is {self.max_size // (1024 * 1024)}MB")
                    await f.write(chunk)
        except Exception:
            # Clean up partial file
            if os.path.exists(file_path):
                os.remove(file_path)
            raise
        return NewAttachment(
            url=f"/{ATTACHMENTS_SUBDIR}/{filename}",
            type=file.content_type or 'application/octet-stream',
        )

    def delete(self, file_url: str) -> bool:
        """Best-effort removal; failures are logged and reported as False"""
        path = self.path_for_url(file_url)
        if not path:
            return False
        try:
            if os.path.exists(path):
                os.remove(path)
                return True
            return False
        except OSError as e:
            logger.error({'msg': 'attachment_delete_failed', 'path': path, 'error': str(e)})
            return False


# Global instance
attachment_storage = AttachmentStorage()
