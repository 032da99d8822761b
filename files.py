import logging
import os
import re
import threading
import time
import uuid
from typing import List

from models import FileRecord

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads"


def _safe_name(original_name):
    name = os.path.basename((original_name or "").replace("\\", "/"))
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name).lstrip(".")
    return name or "file"


class FileStore:
    """Files shared with every participant, kept in upload order."""

    def __init__(self, upload_dir: str):
        self.upload_dir = upload_dir
        os.makedirs(upload_dir, exist_ok=True)
        self._files: List[FileRecord] = []
        self._lock = threading.Lock()

    def add(self, data: bytes, original_name: str) -> FileRecord:
        stored_id = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}_{_safe_name(original_name)}"

        with self._lock:
            with open(os.path.join(self.upload_dir, stored_id), "wb") as f:
                f.write(data)
            record = FileRecord(
                storedId=stored_id,
                originalName=original_name,
                downloadUrl=f"{URL_PREFIX}/{stored_id}",
            )
            self._files.append(record)

        logger.info(f"Stored upload {original_name!r} as {stored_id} ({len(data)} bytes)")
        return record

    def list(self) -> List[FileRecord]:
        with self._lock:
            return list(self._files)

    def clear(self):
        with self._lock:
            removed, self._files = self._files, []
            for record in removed:
                try:
                    os.remove(os.path.join(self.upload_dir, record.storedId))
                except FileNotFoundError:
                    pass
        logger.info(f"Cleared {len(removed)} shared file(s)")
