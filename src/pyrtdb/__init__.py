"""pyrtdb - Async mirror and editor for a realtime JSON document database."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyrtdb")
except PackageNotFoundError:
    __version__ = "0+local"
from pyrtdb.commands import DeleteValue, EditCommand, InsertEntry, SetValue, ValueType
from pyrtdb.config import RtdbConfig
from pyrtdb.devices import RobotControl, RobotControlRequest
from pyrtdb.document import NO_DATA, NodeKind, classify
from pyrtdb.exceptions import (
    DeviceCommandError,
    DocumentInputError,
    RtdbAuthenticationError,
    RtdbConfigError,
    RtdbError,
    RtdbPermissionError,
    RtdbTransportError,
)
from pyrtdb.render import TreeNode
from pyrtdb.session import Session, require_admin
from pyrtdb.status import StatusBanner, StatusKind, StatusMessage
from pyrtdb.store import DocumentStore, MqttDocumentStore, RestDocumentStore, open_store
from pyrtdb.sync import SyncController
from pyrtdb.transfer import export_document, import_document

__all__ = [
    "__version__",
    "DeleteValue",
    "DeviceCommandError",
    "DocumentInputError",
    "DocumentStore",
    "EditCommand",
    "InsertEntry",
    "MqttDocumentStore",
    "NO_DATA",
    "NodeKind",
    "RestDocumentStore",
    "RobotControl",
    "RobotControlRequest",
    "RtdbAuthenticationError",
    "RtdbConfig",
    "RtdbConfigError",
    "RtdbError",
    "RtdbPermissionError",
    "RtdbTransportError",
    "Session",
    "SetValue",
    "StatusBanner",
    "StatusKind",
    "StatusMessage",
    "SyncController",
    "TreeNode",
    "ValueType",
    "classify",
    "export_document",
    "import_document",
    "open_store",
    "require_admin",
]
