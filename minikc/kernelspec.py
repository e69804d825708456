"Discover installed Jupyter kernel specs from a list of search paths."
import asyncio, base64, json, logging, os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NamedTuple
from fastcore.foundation import L
from .errors import DiscoveryError

log = logging.getLogger("minikc.kernelspec")
KERNEL_JSON = "kernel.json"
LOGO = "logo-64x64.png"


class LocationType(str, Enum):
    GLOBAL = "global"
    USER = "user"


class SearchPath(NamedTuple):
    path:str
    location_type:LocationType = LocationType.USER


@dataclass(frozen=True)
class KernelSpec:
    id:str
    location:str
    location_type:LocationType
    binary:str
    argv:tuple[str, ...]
    display_name:str
    language:str
    icon_data:str|None = None

    @property
    def full_argv(self)->list[str]: return [self.binary, *self.argv]


def spec_id(search_path:str, argv: list[str], language:str)->str:
    "Identity shared by identical installs under the same search path."
    return " ".join([search_path, *argv, language])


def _read_icon(path: Path)->str|None:
    if not path.is_file(): return None
    return "data:image/png;base64," + base64.b64encode(path.read_bytes()).decode("ascii")


def load_kernel_spec(kernel_dir:str|os.PathLike, search_path: SearchPath)->KernelSpec|None:
    "Load `kernel_dir/kernel.json`; None when absent, `DiscoveryError` when malformed."
    kernel_dir = Path(kernel_dir)
    json_path = kernel_dir / KERNEL_JSON
    if not json_path.is_file(): return None
    try:
        with open(json_path, encoding="utf-8") as f: raw = json.load(f)
    except (OSError, ValueError) as err: raise DiscoveryError(json_path, str(err)) from err
    if not isinstance(raw, dict): raise DiscoveryError(json_path, "not a JSON object")
    argv = raw.get("argv")
    if not isinstance(argv, list) or not argv or not all(isinstance(a, str) for a in argv):
        raise DiscoveryError(json_path, "argv must be a non-empty list of strings")
    language = raw.get("language", "")
    display_name = raw.get("display_name", kernel_dir.name)
    if not isinstance(language, str) or not isinstance(display_name, str):
        raise DiscoveryError(json_path, "display_name and language must be strings")
    try: icon = _read_icon(kernel_dir / LOGO)
    except OSError as err:
        log.debug("Could not read kernel logo in %s: %s", kernel_dir, err)
        icon = None
    path = str(search_path.path)
    return KernelSpec(id=spec_id(path, argv, language), location=path, location_type=search_path.location_type,
        binary=argv[0], argv=tuple(argv[1:]), display_name=display_name, language=language, icon_data=icon)


def _kernel_dirs(search_path: SearchPath)->list[Path]:
    try: entries = sorted(os.scandir(search_path.path), key=lambda e: e.name)
    except OSError: return []  # speculative location, may not exist
    return [Path(e.path) for e in entries if e.is_dir()]


def _load_isolated(kernel_dir: Path, search_path: SearchPath)->KernelSpec|None:
    try: return load_kernel_spec(kernel_dir, search_path)
    except DiscoveryError as err:
        log.warning("Skipping kernel: %s", err)
        return None


def unique_by_id(specs)->list[KernelSpec]:
    "Drop later specs whose `id` was already seen."
    seen = set()
    out = []
    for spec in specs:
        if spec.id in seen: continue
        seen.add(spec.id)
        out.append(spec)
    return out


async def discover(search_paths)->list[KernelSpec]:
    "Scan `search_paths` in order and return deduplicated kernel specs."
    paths = L(search_paths).map(lambda p: p if isinstance(p, SearchPath) else SearchPath(*p))
    dirs = await asyncio.gather(*[asyncio.to_thread(_kernel_dirs, p) for p in paths])
    jobs = [(d, p) for p, kernel_dirs in zip(paths, dirs) for d in kernel_dirs]
    specs = await asyncio.gather(*[asyncio.to_thread(_load_isolated, d, p) for d, p in jobs])
    return unique_by_id(s for s in specs if s is not None)
