"""Document store over Google Drive (read-only).

Knowledge documents are Google Docs exported as plain text; a knowledge
folder is any Drive folder, of which only Google Docs are considered.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, time_block

logger = get_logger(__name__)

GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
FOLDER_MIME = "application/vnd.google-apps.folder"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]

_PAGE_SIZE = 100


class DocumentAccessError(RuntimeError):
    """Raised when a document or folder cannot be opened or read."""


@dataclass(frozen=True)
class Document:
    id: str
    name: str
    full_text: str


class DocumentStore(Protocol):
    def open_document(self, document_id: str) -> Document: ...

    def open_folder(self, folder_id: str) -> Iterator[str]: ...


def build_drive_service(credentials: Any) -> Any:
    """Build an authenticated Drive v3 service."""
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


class DriveDocumentStore:
    """DocumentStore implementation on the Drive v3 REST API."""

    def __init__(self, service: Any) -> None:
        self.service = service

    def _get_metadata(self, file_id: str) -> dict[str, Any]:
        try:
            return (
                self.service.files()
                .get(fileId=file_id, fields="id,name,mimeType", supportsAllDrives=True)
                .execute()
            )
        except HttpError as e:
            raise DocumentAccessError(f"Drive file {file_id} is not accessible: {e}") from e

    def open_document(self, document_id: str) -> Document:
        """
        Read a Google Doc as plain text.

        Raises:
            DocumentAccessError: If the file is missing, not shared, or not a Google Doc

        Side Effects:
            - Two Drive API calls (metadata + export)
        """
        meta = self._get_metadata(document_id)
        if meta.get("mimeType") != GOOGLE_DOC_MIME:
            raise DocumentAccessError(
                f"Drive file {document_id} is {meta.get('mimeType')}, not a Google Doc"
            )

        with time_block("drive.export.latency"):
            try:
                data = (
                    self.service.files()
                    .export(fileId=document_id, mimeType="text/plain")
                    .execute()
                )
            except HttpError as e:
                raise DocumentAccessError(f"Could not export document {document_id}: {e}") from e

        text = data.decode("utf-8") if isinstance(data, bytes) else str(data)
        counter("drive.document.read")
        text = text.lstrip("\ufeff")
        return Document(id=document_id, name=meta.get("name", document_id), full_text=text)

    def open_folder(self, folder_id: str) -> Iterator[str]:
        """
        Verify the folder is accessible and return an iterator of its Google Doc ids.

        The folder itself is checked eagerly; listing pages are fetched lazily
        so a caller capping the number of documents stops paging early.

        Raises:
            DocumentAccessError: If the folder is missing, not shared, or not a folder
        """
        meta = self._get_metadata(folder_id)
        if meta.get("mimeType") != FOLDER_MIME:
            raise DocumentAccessError(f"Drive file {folder_id} is not a folder")
        return self._iter_folder(folder_id)

    def _iter_folder(self, folder_id: str) -> Iterator[str]:
        query = f"'{folder_id}' in parents and mimeType = '{GOOGLE_DOC_MIME}' and trashed = false"
        page_token: str | None = None
        while True:
            try:
                response = (
                    self.service.files()
                    .list(
                        q=query,
                        fields="nextPageToken, files(id, name)",
                        pageSize=_PAGE_SIZE,
                        pageToken=page_token,
                        supportsAllDrives=True,
                        includeItemsFromAllDrives=True,
                    )
                    .execute()
                )
            except HttpError as e:
                raise DocumentAccessError(f"Could not list folder {folder_id}: {e}") from e

            for item in response.get("files", []):
                yield item["id"]

            page_token = response.get("nextPageToken")
            if not page_token:
                return
