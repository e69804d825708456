"Launch a kernel spec as a connection plus a supervised process that are disposed together."
import logging
from fastcore.basics import store_attr
from .connection import Connection
from .messages import execute_request
from .process import KernelProcess, launch
from .stream import take_until

log = logging.getLogger("minikc.provider")


class RunningKernel:
    def __init__(self, spec, connection: Connection, process: KernelProcess):
        store_attr()
        self.disposed = False

    async def execute(self, code:str, **kwargs):
        "Yield every message caused by executing `code`, ending with its `execute_reply`."
        replies = self.connection.send_and_receive(execute_request(code, **kwargs))
        async for msg in take_until(replies, lambda m: m.msg_type == "execute_reply"): yield msg

    def dispose(self):
        "Dispose connection and process together; safe to call more than once."
        if self.disposed: return
        self.disposed = True
        try: self.connection.dispose()
        finally: self.process.dispose()

    async def aclose(self, timeout:float=5.0):
        "`dispose`, then wait for the kernel process to exit."
        self.dispose()
        await self.process.aclose(timeout)

    async def __aenter__(self): return self
    async def __aexit__(self, *exc): await self.aclose()

    def __repr__(self): return f"RunningKernel({self.spec.display_name!r}, pid={self.process.pid})"


async def launch_kernel(spec, env: dict|None=None, cwd:str|None=None, ip:str|None=None, **conn_kwargs)->RunningKernel:
    "Create the connection (and its file) first, then spawn the kernel pointing at it."
    connection = await Connection.create(ip=ip, **conn_kwargs)
    try: process = await launch(spec, connection.connection_file, env=env, cwd=cwd)
    except BaseException:
        connection.dispose()
        raise
    log.info("Kernel %r started pid=%s", spec.display_name, process.pid)
    return RunningKernel(spec, connection, process)
