"""Shared pytest fixtures for trilium-sync tests."""

import base64
import re
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

from trilium_sync.config import Config
from trilium_sync.core.errors import EtapiNotFoundError
from trilium_sync.core.models import Attachment, Attribute, Note

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live Trilium instance",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live Trilium instance"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        etapi_url="https://trilium.example.com",
        token="test-token",
        insecure=False,
    )


# ---------------------------------------------------------------------------
# In-memory note store
# ---------------------------------------------------------------------------

_LABEL_QUERY = re.compile(r'#([\w:-]+) = "((?:[^"\\]|\\.)*)"')

WRITE_METHODS = frozenset(
    {
        "create_note",
        "update_note",
        "update_note_content",
        "delete_note",
        "create_attachment",
        "update_attachment_content",
    }
)


class FakeEtapiClient:
    """Minimal EtapiClient replacement for testing.

    Notes, labels and attachments live in dicts. Every write call is
    appended to ``calls`` so tests can count store writes.
    """

    def __init__(self) -> None:
        self.notes: Dict[str, Dict[str, Any]] = {
            "root": {
                "title": "root",
                "type": "text",
                "mime": "text/html",
                "content": "",
                "parent": None,
                "labels": [],
                "children": [],
            }
        }
        self.attachments: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail_search = False
        self.fail_create_titles: set = set()
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}{self._seq:03d}"

    def get_app_info(self) -> Dict[str, Any]:
        return {"appVersion": "0.63.0"}

    @property
    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in WRITE_METHODS]

    # -- helpers for tests ---------------------------------------------------

    def add_note(
        self,
        title: str,
        content: str = "",
        parent_id: str = "root",
        labels: Optional[Dict[str, str]] = None,
        mime: str = "text/html",
        note_id: Optional[str] = None,
        date_created: Optional[str] = None,
    ) -> str:
        note_id = note_id or self._next_id("n")
        self.notes[note_id] = {
            "title": title,
            "type": "text",
            "mime": mime,
            "content": content,
            "parent": parent_id,
            "labels": list((labels or {}).items()),
            "children": [],
            "date_created": date_created,
        }
        self.notes[parent_id]["children"].append(note_id)
        return note_id

    def labels_of(self, note_id: str) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        for name, value in self.notes[note_id]["labels"]:
            result.setdefault(name, []).append(value)
        return result

    def find(self, title: str) -> str:
        for note_id, data in self.notes.items():
            if data["title"] == title:
                return note_id
        raise KeyError(title)

    def _model(self, note_id: str) -> Note:
        data = self.notes[note_id]
        return Note(
            note_id=note_id,
            title=data["title"],
            type=data["type"],
            mime=data["mime"],
            attributes=[
                Attribute(note_id=note_id, type="label", name=name, value=value)
                for name, value in data["labels"]
            ],
            parent_note_ids=[data["parent"]] if data["parent"] else [],
            child_note_ids=list(data["children"]),
            date_created=data.get("date_created"),
        )

    # -- EtapiClient surface -------------------------------------------------

    def create_note(
        self,
        parent_id: str,
        title: str,
        content: str,
        type: str = "text",
        mime: Optional[str] = None,
        attributes: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        self.calls.append(("create_note", parent_id, title))
        if title in self.fail_create_titles:
            raise RuntimeError(f"cannot create {title}")
        if parent_id not in self.notes:
            raise EtapiNotFoundError(f"parent {parent_id} missing", status=404)
        note_id = self._next_id("n")
        self.notes[note_id] = {
            "title": title,
            "type": type,
            "mime": mime or "text/html",
            "content": content,
            "parent": parent_id,
            "labels": [
                (a["name"], a.get("value", ""))
                for a in attributes or []
                if a.get("type", "label") == "label"
            ],
            "children": [],
        }
        self.notes[parent_id]["children"].append(note_id)
        return note_id

    def get_note(self, note_id: str) -> Note:
        if note_id not in self.notes:
            raise EtapiNotFoundError(f"note {note_id} missing", status=404)
        return self._model(note_id)

    def get_note_content(self, note_id: str) -> str:
        if note_id not in self.notes:
            raise EtapiNotFoundError(f"note {note_id} missing", status=404)
        return self.notes[note_id]["content"]

    def get_child_notes(self, note_id: str) -> List[Note]:
        return [self._model(c) for c in self.notes[note_id]["children"]]

    def search_notes(self, query: str, **kwargs: Any) -> List[Note]:
        self.calls.append(("search_notes", query))
        if self.fail_search:
            raise ConnectionError("search unavailable")
        match = _LABEL_QUERY.fullmatch(query.strip())
        if not match:
            return []
        name = match.group(1)
        value = re.sub(r"\\(.)", r"\1", match.group(2))
        return [
            self._model(note_id)
            for note_id, data in self.notes.items()
            if (name, value) in data["labels"]
        ]

    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        type: Optional[str] = None,
        mime: Optional[str] = None,
    ) -> Note:
        self.calls.append(("update_note", note_id, title))
        data = self.notes[note_id]
        if title is not None:
            data["title"] = title
        if type is not None:
            data["type"] = type
        if mime is not None:
            data["mime"] = mime
        return self._model(note_id)

    def update_note_content(self, note_id: str, content: str) -> None:
        self.calls.append(("update_note_content", note_id))
        self.notes[note_id]["content"] = content

    def delete_note(self, note_id: str) -> None:
        self.calls.append(("delete_note", note_id))
        self.notes.pop(note_id)

    def create_attachment(
        self,
        owner_id: str,
        title: str,
        content: str,
        mime: str = "application/octet-stream",
        role: str = "file",
    ) -> str:
        self.calls.append(("create_attachment", owner_id, title))
        attachment_id = self._next_id("a")
        self.attachments[attachment_id] = {
            "owner": owner_id,
            "title": title,
            "mime": mime,
            "role": role,
            "data": base64.b64decode(content),
        }
        return attachment_id

    def get_attachments(self, note_id: str) -> List[Attachment]:
        return [
            Attachment(
                attachment_id=attachment_id,
                owner_id=data["owner"],
                role=data["role"],
                mime=data["mime"],
                title=data["title"],
                content_length=len(data["data"]),
            )
            for attachment_id, data in self.attachments.items()
            if data["owner"] == note_id
        ]

    def get_attachment_content(self, attachment_id: str) -> bytes:
        return self.attachments[attachment_id]["data"]

    def update_attachment_content(self, attachment_id: str, content: bytes) -> None:
        self.calls.append(("update_attachment_content", attachment_id))
        self.attachments[attachment_id]["data"] = content


@pytest.fixture
def fake_client():
    """In-memory note store exposing the EtapiClient methods."""
    return FakeEtapiClient()


@pytest.fixture
def write_tree(tmp_path):
    """Factory writing ``{relative_path: str | bytes}`` under a directory."""

    def _write(files: Dict[str, Any], root_name: str = "source"):
        root = tmp_path / root_name
        root.mkdir(parents=True, exist_ok=True)
        for rel_path, content in files.items():
            path = root / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return _write
