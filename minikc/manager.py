"Keep at most one running kernel per key (a document, a session name) for the active kernel spec."
import asyncio, logging
from fastcore.basics import store_attr
from .kernelspec import KernelSpec, discover
from .paths import default_search_paths
from .provider import RunningKernel, launch_kernel

log = logging.getLogger("minikc.manager")


class KernelManager:
    def __init__(self, search_paths=None, preferred_id:str|None=None, launcher=launch_kernel):
        "Manage kernels discovered on `search_paths` (platform defaults when None)."
        store_attr()
        self.active_spec = None
        self.kernels = {}

    async def available_kernels(self)->list[KernelSpec]:
        paths = default_search_paths() if self.search_paths is None else self.search_paths
        return await discover(paths)

    async def get_active_spec(self)->KernelSpec|None:
        "Active spec, else the preferred one, else the first discovered."
        if self.active_spec is not None: return self.active_spec
        available = await self.available_kernels()
        if not available:
            log.error("No Jupyter kernels were found on this machine")
            return None
        return next((k for k in available if k.id == self.preferred_id), available[0])

    def set_active(self, spec: KernelSpec):
        "Switch spec; running kernels are closed and relaunched on demand."
        self.close_all()
        self.active_spec = spec
        self.preferred_id = spec.id

    async def get_kernel(self, key)->RunningKernel|None:
        "Return the kernel for `key`, launching it once even under concurrent callers."
        if (pending := self.kernels.get(key)) is not None: return await asyncio.shield(pending)
        spec = await self.get_active_spec()
        if spec is None: return None
        if (pending := self.kernels.get(key)) is not None: return await asyncio.shield(pending)
        task = asyncio.create_task(self._launch(key, spec))
        self.kernels[key] = task
        return await asyncio.shield(task)

    async def _launch(self, key, spec: KernelSpec)->RunningKernel|None:
        me = asyncio.current_task()
        try: kernel = await self.launcher(spec)
        except Exception:
            log.exception("Error launching kernel %r", spec.display_name)
            if self.kernels.get(key) is me: del self.kernels[key]
            return None
        current = self.kernels.get(key)
        if current is me: return kernel
        # stopped or changed kernels while launching
        kernel.dispose()
        return await current if current is not None else None

    def close_all(self):
        "Dispose every running kernel; launches still in flight dispose themselves."
        tasks, self.kernels = list(self.kernels.values()), {}
        for task in tasks:
            if task.done() and not task.cancelled() and (kernel := task.result()) is not None: kernel.dispose()

    def dispose(self): self.close_all()
