"Spawn and supervise a kernel's OS process."
import asyncio, logging, os, sys
from .errors import KernelExitError, LaunchError
from .stream import Broadcast

log = logging.getLogger("minikc.process")
CONNECTION_FILE_TOKEN = "{connection_file}"
CHUNK_SIZE = 64 * 1024


def _decode_line(line: bytes)->str: return line.decode("utf-8", "replace").rstrip("\r")


def substitute_argv(argv, connection_file:str)->list[str]:
    "Replace every `{connection_file}` occurrence in `argv` with `connection_file`."
    return [arg.replace(CONNECTION_FILE_TOKEN, connection_file) for arg in argv]


class KernelProcess:
    """A running kernel process.

    `stdout` and `stderr` broadcast decoded lines to subscribers from the point they subscribe.
    `exit` is a future resolved exactly once with None (graceful) or a `KernelExitError`; a process
    stopped by `dispose()` always resolves with None whatever its exit code.
    """

    def __init__(self, proc: asyncio.subprocess.Process):
        self.proc = proc
        self.stdout, self.stderr = Broadcast("stdout"), Broadcast("stderr")
        self.exit = asyncio.get_running_loop().create_future()
        self.killed = False
        self.tasks = [asyncio.create_task(self._pump(proc.stdout, self.stdout)),
            asyncio.create_task(self._pump(proc.stderr, self.stderr)), asyncio.create_task(self._watch())]

    @property
    def pid(self)->int: return self.proc.pid

    @property
    def returncode(self)->int|None: return self.proc.returncode

    async def _pump(self, reader: asyncio.StreamReader|None, out: Broadcast):
        "Publish each line read from `reader`; lines may be any length."
        if reader is None: return
        partial = bytearray()
        try:
            while (chunk := await reader.read(CHUNK_SIZE)):
                if b"\n" not in chunk:
                    partial += chunk
                    continue
                head, *lines, tail = chunk.split(b"\n")
                out.publish(_decode_line(bytes(partial + head)))
                for line in lines: out.publish(_decode_line(line))
                partial = bytearray(tail)
            if partial: out.publish(_decode_line(bytes(partial)))
        except OSError as err: log.debug("kernel %s reader stopped: %s", out.name, err)
        finally: out.close()

    async def _watch(self):
        code = await self.proc.wait()
        # `killed` is read here, after the exit; dispose() sets it before signalling.
        err = KernelExitError(code) if code and not self.killed else None
        if err is not None: log.warning("Kernel pid=%s exited with code %s", self.pid, code)
        else: log.info("Kernel pid=%s exited (code=%s)", self.pid, code)
        if not self.exit.done(): self.exit.set_result(err)

    async def wait(self)->KernelExitError|None:
        "Wait for exit; returns None when graceful, else the `KernelExitError`."
        return await asyncio.shield(self.exit)

    def connect_to_process_stdio(self):
        "Mirror kernel output to our stdout/stderr and log the exit; returns a detach callable."
        async def pipe(sub, stream, prefix):
            async for line in sub: print(f"{prefix}> {line}", file=stream, flush=True)

        subs = [(self.stderr.subscribe(), sys.stderr, "kernel stderr"), (self.stdout.subscribe(), sys.stdout, "kernel stdout")]
        tasks = [asyncio.create_task(pipe(*s)) for s in subs]

        def report(fut: asyncio.Future):
            if fut.cancelled(): return
            if (err := fut.result()) is not None: log.error("%s", err)
            else: log.info("Kernel exited gracefully")

        self.exit.add_done_callback(report)

        def detach():
            for sub, _, _ in subs: sub.close()
            self.exit.remove_done_callback(report)
            return tasks

        return detach

    def dispose(self):
        "Terminate the process if still running; safe to call more than once."
        if self.killed: return
        self.killed = True
        if self.proc.returncode is not None: return
        try: self.proc.terminate()
        except ProcessLookupError: pass

    async def aclose(self, timeout:float=5.0):
        "`dispose`, then wait until the process is reaped and its pipes drained; kills it after `timeout`."
        self.dispose()
        try: await asyncio.wait_for(asyncio.shield(self.exit), timeout)
        except asyncio.TimeoutError:
            log.warning("Kernel pid=%s still running %ss after terminate; killing", self.pid, timeout)
            try: self.proc.kill()
            except ProcessLookupError: pass
            await asyncio.shield(self.exit)
        await asyncio.gather(*self.tasks, return_exceptions=True)


async def launch(spec, connection_file:str|os.PathLike, env: dict|None=None, cwd:str|None=None)->KernelProcess:
    "Spawn `spec.binary` with `spec.argv`, substituting the connection file path."
    connection_file = os.path.abspath(connection_file)
    argv = substitute_argv(spec.argv, connection_file)
    log.info("Launching kernel %r: %s %s", getattr(spec, "display_name", ""), spec.binary, " ".join(argv))
    try:
        proc = await asyncio.create_subprocess_exec(spec.binary, *argv, stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE, env=env, cwd=cwd)
    except OSError as err: raise LaunchError(f"Could not start kernel {spec.binary!r}: {err}") from err
    return KernelProcess(proc)
