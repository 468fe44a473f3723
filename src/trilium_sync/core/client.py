import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..validators import validate_content, validate_note_title
from .cache import TTLCache
from .errors import EtapiConnectionError, error_for_status
from .models import Attachment, Attribute, Note

logger = logging.getLogger(__name__)


class EtapiClient:
    """Blocking client for the Trilium ETAPI REST interface.

    Every response is converted into ``Note``/``Attribute``/``Attachment``
    models here. Note metadata and note content are kept in a ``TTLCache``
    owned by the client; any write to a note invalidates its entries.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = self._get_base_url()
        self.cache: TTLCache[tuple[str, str], Any] = TTLCache(
            max_size=config.cache_size, ttl=config.cache_ttl
        )

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_base_url(self) -> str:
        base = self.config.etapi_url.rstrip("/")
        if base.endswith("/etapi"):
            return base
        return f"{base}/etapi"

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Authorization"] = self.config.token
        session.verify = not self.config.insecure
        return session

    def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> requests.Response:
        """
        Make an ETAPI request and map HTTP failures to ``EtapiError``.
        """
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            response = session.request(
                method,
                url,
                timeout=(10, self.config.request_timeout),
                **kwargs,
            )
        except requests.RequestException as exc:
            raise EtapiConnectionError(
                f"{method} {path} failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            message = response.reason or "request failed"
            code = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = body.get("message") or message
                code = body.get("code")
            logger.debug(
                "ETAPI %s %s -> %d %s", method, path, response.status_code, message
            )
            raise error_for_status(
                response.status_code,
                f"{method} {path}: {message}",
                code=code,
            )
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        if not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def get_app_info(self) -> dict[str, Any]:
        """
        Fetch server information; doubles as a connection check.
        """
        return self._json("GET", "/app-info")

    def get_note(self, note_id: str) -> Note:
        """
        Get note metadata (title, type, mime, attributes, children).

        Raises:
            EtapiNotFoundError: If the note does not exist.
        """
        cached = self.cache.get(("note", note_id))
        if cached is not None:
            return cached
        note = Note.model_validate(self._json("GET", f"/notes/{note_id}"))
        self.cache.set(("note", note_id), note)
        return note

    def get_note_content(self, note_id: str) -> str:
        """
        Get the note body as text (HTML for text notes).
        """
        cached = self.cache.get(("content", note_id))
        if cached is not None:
            return cached
        response = self._request("GET", f"/notes/{note_id}/content")
        response.encoding = response.encoding or "utf-8"
        content = response.text
        self.cache.set(("content", note_id), content)
        return content

    def get_child_notes(self, note_id: str) -> list[Note]:
        """Return the direct children of a note, in tree order."""
        parent = self.get_note(note_id)
        return [self.get_note(child) for child in parent.child_note_ids]

    def search_notes(
        self,
        query: str,
        fast_search: bool = False,
        include_archived: bool = False,
        limit: int | None = None,
    ) -> list[Note]:
        """
        Search notes with Trilium search syntax (e.g. ``#source = "git"``).

        Returns:
            Matching notes; an empty list when nothing matches.
        """
        params: dict[str, Any] = {
            "search": query,
            "fastSearch": str(fast_search).lower(),
            "includeArchivedNotes": str(include_archived).lower(),
        }
        if limit is not None:
            params["limit"] = limit
        data = self._json("GET", "/notes", params=params) or {}
        results = data.get("results", []) if isinstance(data, dict) else data
        return [Note.model_validate(item) for item in results]

    def create_note(
        self,
        parent_id: str,
        title: str,
        content: str,
        type: str = "text",
        mime: str | None = None,
        attributes: list[dict[str, Any]] | None = None,
    ) -> str:
        """
        Create a note under ``parent_id`` and attach its attributes.

        Args:
            parent_id: Parent note id (``root`` for the tree root).
            title: Note title.
            content: Initial body.
            type: Note type (text, code, file, ...).
            mime: Optional MIME type (required by ETAPI for code notes).
            attributes: Dicts with ``type``, ``name``, ``value`` keys.

        Returns:
            The new note id.

        Raises:
            ValueError: If the title or content fails validation.
            EtapiError: If any request fails.
        """
        is_valid, error_msg = validate_note_title(title)
        if not is_valid:
            raise ValueError(f"Invalid note title: {error_msg}")
        is_valid, error_msg = validate_content(content)
        if not is_valid:
            raise ValueError(f"Invalid content: {error_msg}")

        payload: dict[str, Any] = {
            "parentNoteId": parent_id,
            "title": title,
            "type": type,
            "content": content,
        }
        if mime:
            payload["mime"] = mime
        data = self._json("POST", "/create-note", json=payload)
        note_data = data.get("note", data) if isinstance(data, dict) else {}
        note_id = note_data["noteId"]

        for attr in attributes or []:
            self.create_attribute(
                note_id,
                attr.get("type", "label"),
                attr["name"],
                attr.get("value", ""),
                is_inheritable=attr.get("isInheritable", False),
            )
        self.cache.invalidate(("note", parent_id))
        return note_id

    def update_note(
        self,
        note_id: str,
        title: str | None = None,
        type: str | None = None,
        mime: str | None = None,
    ) -> Note:
        """Patch note metadata; only given fields are sent."""
        patch: dict[str, Any] = {}
        if title is not None:
            is_valid, error_msg = validate_note_title(title)
            if not is_valid:
                raise ValueError(f"Invalid note title: {error_msg}")
            patch["title"] = title
        if type is not None:
            patch["type"] = type
        if mime is not None:
            patch["mime"] = mime
        self.cache.invalidate(("note", note_id))
        note = Note.model_validate(
            self._json("PATCH", f"/notes/{note_id}", json=patch)
        )
        self.cache.set(("note", note_id), note)
        return note

    def update_note_content(self, note_id: str, content: str) -> None:
        """Replace the note body."""
        self.cache.invalidate(("content", note_id))
        self._request(
            "PUT",
            f"/notes/{note_id}/content",
            data=content.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )

    def delete_note(self, note_id: str) -> None:
        self.cache.invalidate(("note", note_id))
        self.cache.invalidate(("content", note_id))
        self._request("DELETE", f"/notes/{note_id}")

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def get_note_attributes(self, note_id: str) -> list[Attribute]:
        """Return the note's own attributes."""
        return list(self.get_note(note_id).attributes)

    def create_attribute(
        self,
        note_id: str,
        type: str,
        name: str,
        value: str = "",
        is_inheritable: bool = False,
    ) -> Attribute:
        """Add a label or relation to a note."""
        self.cache.invalidate(("note", note_id))
        data = self._json(
            "POST",
            "/attributes",
            json={
                "noteId": note_id,
                "type": type,
                "name": name,
                "value": value,
                "isInheritable": is_inheritable,
            },
        )
        return Attribute.model_validate(data)

    def update_attribute(self, attribute_id: str, value: str) -> Attribute:
        data = self._json(
            "PATCH", f"/attributes/{attribute_id}", json={"value": value}
        )
        attribute = Attribute.model_validate(data)
        self.cache.invalidate(("note", attribute.note_id))
        return attribute

    def delete_attribute(self, attribute_id: str) -> None:
        self._request("DELETE", f"/attributes/{attribute_id}")
        # Owner unknown here; drop cached notes so attributes are refetched
        self.cache.clear()

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def create_attachment(
        self,
        owner_id: str,
        title: str,
        content: str,
        mime: str = "application/octet-stream",
        role: str = "file",
    ) -> str:
        """
        Create an attachment owned by a note.

        Args:
            owner_id: Note that owns the attachment.
            title: Attachment title (usually the file name).
            content: Base64-encoded bytes.
            mime: MIME type of the decoded bytes.
            role: ``file`` or ``image``.

        Returns:
            The new attachment id.
        """
        data = self._json(
            "POST",
            "/attachments",
            json={
                "ownerId": owner_id,
                "role": role,
                "mime": mime,
                "title": title,
                "content": content,
            },
        )
        return data["attachmentId"]

    def get_attachments(self, note_id: str) -> list[Attachment]:
        data = self._json("GET", f"/notes/{note_id}/attachments") or []
        return [Attachment.model_validate(item) for item in data]

    def get_attachment_content(self, attachment_id: str) -> bytes:
        response = self._request(
            "GET", f"/attachments/{attachment_id}/content"
        )
        return response.content

    def update_attachment_content(self, attachment_id: str, content: bytes) -> None:
        """Replace an attachment's raw bytes."""
        self._request(
            "PUT",
            f"/attachments/{attachment_id}/content",
            data=content,
            headers={"Content-Type": "application/octet-stream"},
        )

    def __repr__(self) -> str:
        return f"EtapiClient({self.base_url!r})"
