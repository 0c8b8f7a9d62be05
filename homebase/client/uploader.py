"""
Object upload gateway

Files are PUT straight to object storage using presigned URLs issued by the
API. Each successful upload yields an UploadedFile descriptor whose ``path``
(``/objects/<folder>/<id>``) is what gets stored on a proposal.
"""

import inspect
import logging
from typing import Awaitable, Callable, Iterable, Optional, Union

import httpx
from pydantic import BaseModel

from ..shared.validators import (
    DEFAULT_ACCEPTED_FILE_TYPES,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_FILES,
    has_allowed_extension,
    object_path_from_url,
)
from .api import ApiError, HomeBaseClient
from .notifier import Notifier

logger = logging.getLogger(__name__)


class LocalFile(BaseModel):
    """A file picked by the user, not yet uploaded"""

    name: str
    data: bytes
    type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


class UploadedFile(BaseModel):
    name: str
    size: int
    type: str
    url: str
    path: str


CompletionCallback = Callable[[list[UploadedFile]], Union[Awaitable[None], None]]


def _format_size(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):.1f} MB"


class ObjectUploadGateway:
    """
    Select files, then upload them one at a time.

    Selection enforces the per-file size cap (oversized files are dropped) and
    the file-count ceiling (a batch that would exceed it is refused whole).
    """

    def __init__(
        self,
        api: HomeBaseClient,
        notifier: Notifier,
        storage_client: Optional[httpx.AsyncClient] = None,
        max_number_of_files: int = DEFAULT_MAX_FILES,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        accepted_file_types: Iterable[str] = DEFAULT_ACCEPTED_FILE_TYPES,
        file_type: str = "proposal",
        on_complete: Optional[CompletionCallback] = None,
    ):
        self.api = api
        self.notifier = notifier
        self.storage_client = storage_client
        self.max_number_of_files = max_number_of_files
        self.max_file_size = max_file_size
        self.accepted_file_types = list(accepted_file_types)
        self.file_type = file_type
        self.on_complete = on_complete
        self.selection: list[LocalFile] = []

    def add_files(self, files: Iterable[LocalFile]) -> list[LocalFile]:
        """
        Add files to the selection.

        Returns:
            The files that were added; empty when the batch was refused
        """
        candidates = []
        for file in files:
            if not has_allowed_extension(file.name, self.accepted_file_types):
                self.notifier.toast(
                    "File type not allowed",
                    f"{file.name} is not one of: {', '.join(self.accepted_file_types)}",
                    variant="destructive",
                )
                continue
            if file.size > self.max_file_size:
                self.notifier.toast(
                    "File too large",
                    f"{file.name} is {_format_size(file.size)}; the limit is {_format_size(self.max_file_size)}",
                    variant="destructive",
                )
                logger.info(f"🚫 Rejected {file.name}: {file.size} bytes exceeds {self.max_file_size}")
                continue
            candidates.append(file)

        if len(self.selection) + len(candidates) > self.max_number_of_files:
            self.notifier.toast(
                "Too many files",
                f"You can only upload {self.max_number_of_files} file(s)",
                variant="destructive",
            )
            logger.info(
                f"🚫 Rejected batch of {len(candidates)}: {len(self.selection)} already selected, "
                f"limit {self.max_number_of_files}"
            )
            return []

        self.selection.extend(candidates)
        return candidates

    def remove_file(self, name: str) -> None:
        self.selection = [file for file in self.selection if file.name != name]

    def clear(self) -> None:
        self.selection = []

    async def _put(self, url: str, file: LocalFile) -> httpx.Response:
        headers = {"Content-Type": file.type}
        if self.storage_client is not None:
            return await self.storage_client.put(url, content=file.data, headers=headers)
        async with httpx.AsyncClient(timeout=60.0) as client:
            return await client.put(url, content=file.data, headers=headers)

    async def _upload_one(self, file: LocalFile) -> UploadedFile:
        target = await self.api.request_upload_target(self.file_type)
        response = await self._put(target["url"], file)
        response.raise_for_status()

        # Drop the presigned query string; the path identifies the object
        object_url = str(response.url).split("?", 1)[0]
        return UploadedFile(
            name=file.name,
            size=file.size,
            type=file.type,
            url=object_url,
            path=object_path_from_url(object_url),
        )

    async def upload(self) -> list[UploadedFile]:
        """
        Upload the selection in order.

        A failed file is reported and skipped; the rest still upload. The
        completion callback runs only when at least one file succeeded.
        """
        uploaded = []
        for file in self.selection:
            try:
                descriptor = await self._upload_one(file)
            except (ApiError, httpx.HTTPError) as e:
                logger.error(f"❌ Upload failed for {file.name}: {e}")
                self.notifier.toast("Upload failed", f"Could not upload {file.name}", variant="destructive")
                continue
            logger.info(f"✅ Uploaded {file.name} to {descriptor.path}")
            uploaded.append(descriptor)

        self.selection = []

        if uploaded and self.on_complete is not None:
            result = self.on_complete(uploaded)
            if inspect.isawaitable(result):
                await result

        return uploaded
