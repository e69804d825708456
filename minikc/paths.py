"Platform-specific default kernel search paths, roughly in priority order."
import os, sys
from pathlib import Path
from .kernelspec import LocationType, SearchPath

User, Global = LocationType.USER, LocationType.GLOBAL


def default_search_paths(env: dict|None=None, platform:str|None=None, home:str|None=None)->list[SearchPath]:
    "Kernel directories from conda, JUPYTER_PATH, and the usual per-user and system-wide locations."
    env = os.environ if env is None else env
    platform = platform or sys.platform
    home = home or str(Path.home())
    paths = []
    if (conda := env.get("CONDA_PREFIX")):
        paths += [SearchPath(os.path.join(conda, "share", "jupyter", "kernels"), User),
            SearchPath(os.path.join(conda, "local", "share", "jupyter", "kernels"), User)]
    for entry in (env.get("JUPYTER_PATH") or "").split(os.pathsep):
        if entry: paths.append(SearchPath(os.path.join(entry, "kernels"), User))
    if platform == "win32":
        paths += [SearchPath(f"{env.get('APPDATA', '')}\\jupyter\\kernels", User),
            SearchPath(f"{env.get('PROGRAMDATA', '')}\\jupyter\\kernels", Global)]
    else:
        paths += [SearchPath(f"{home}/Library/Jupyter/kernels", User), SearchPath(f"{home}/.local/share/jupyter/kernels", User),
            SearchPath("/opt/conda/share/jupyter/kernels", User), SearchPath("/opt/conda/local/share/jupyter/kernels", User),
            SearchPath("/usr/share/jupyter/kernels", Global), SearchPath("/usr/local/share/jupyter/kernels", Global)]
    return paths
