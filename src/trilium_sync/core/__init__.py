"""ETAPI client, cache and async helpers shared by the transfer pipelines."""

from .async_utils import gather_limited, run_sync
from .cache import TTLCache
from .client import EtapiClient
from .errors import EtapiError, EtapiNotFoundError
from .models import Attachment, Attribute, Note

__all__ = [
    "Attachment",
    "Attribute",
    "EtapiClient",
    "EtapiError",
    "EtapiNotFoundError",
    "Note",
    "TTLCache",
    "gather_limited",
    "run_sync",
]
