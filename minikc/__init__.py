from importlib.metadata import PackageNotFoundError, version
from .connection import Connection, ConnectionInfo
from .errors import DiscoveryError, KernelClientError, KernelExitError, LaunchError, ProtocolError, SignatureError
from .kernelspec import KernelSpec, LocationType, SearchPath, discover
from .manager import KernelManager
from .messages import Message, make_message
from .paths import default_search_paths
from .process import KernelProcess, launch
from .provider import RunningKernel, launch_kernel
from .stream import Broadcast, take_until
from .wire import WireCodec

try:
    __version__ = version("minikc")
except PackageNotFoundError:  # pragma: no cover - local editable without metadata
    __version__ = "0.0.0+local"

__all__ = ["Connection", "ConnectionInfo", "DiscoveryError", "KernelClientError", "KernelExitError", "LaunchError",
    "ProtocolError", "SignatureError", "KernelSpec", "LocationType", "SearchPath", "discover", "KernelManager", "Message",
    "make_message", "default_search_paths", "KernelProcess", "launch", "RunningKernel", "launch_kernel", "Broadcast",
    "take_until", "WireCodec", "__version__"]
