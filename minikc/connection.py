import asyncio, json, logging, os, secrets, socket, tempfile
from dataclasses import dataclass, fields
from fastcore.basics import store_attr
import zmq, zmq.asyncio
from .debug import dbg, envbool, tlog
from .errors import ProtocolError
from .messages import RECV_CHANNELS, SEND_CHANNELS, Message
from .stream import Broadcast
from .wire import DEFAULT_SCHEME, WireCodec

log = logging.getLogger("minikc.connection")
LOCALHOST = "127.0.0.1"


@dataclass
class ConnectionInfo:
    transport:str
    ip:str
    shell_port:int
    iopub_port:int
    stdin_port:int
    control_port:int
    hb_port:int
    key:str
    signature_scheme:str

    @classmethod
    def from_file(cls, path:str)->"ConnectionInfo":
        "Load connection info from JSON connection file at `path`."
        with open(path, encoding="utf-8") as f: data = json.load(f)
        return cls(transport=data["transport"], ip=data["ip"], shell_port=int(data["shell_port"]),
            iopub_port=int(data["iopub_port"]), stdin_port=int(data["stdin_port"]), control_port=int(data["control_port"]),
            hb_port=int(data["hb_port"]), key=data.get("key", ""), signature_scheme=data.get("signature_scheme", DEFAULT_SCHEME))

    def to_dict(self)->dict:
        "Connection file contents, as read by the kernel."
        return dict(control_port=self.control_port, shell_port=self.shell_port, hb_port=self.hb_port, stdin_port=self.stdin_port,
            iopub_port=self.iopub_port, transport=self.transport, ip=self.ip, signature_scheme=self.signature_scheme, key=self.key)

    def write(self, path:str|None=None)->str:
        "Write a private (0600) connection file; a unique temp name is chosen when `path` is None."
        if path is None: path = os.path.join(tempfile.gettempdir(), f"minikc-{secrets.token_hex(8)}.json")
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f: json.dump(self.to_dict(), f, indent=2)
        return path

    def addr(self, port:int)->str: return f"{self.transport}://{self.ip}:{port}"


def free_ports(ip:str, n:int)->list[int]:
    "Reserve `n` distinct ephemeral TCP ports on `ip` by binding them all at once."
    socks = []
    try:
        for _ in range(n):
            s = socket.socket(socket.AF_INET6 if ":" in ip else socket.AF_INET, socket.SOCK_STREAM)
            socks.append(s)
            s.bind((ip, 0))
        return [s.getsockname()[1] for s in socks]
    finally:
        for s in socks: s.close()


@dataclass
class Channels:
    "The five sockets of one session; control/shell/stdin share one routing id."
    control:zmq.asyncio.Socket
    shell:zmq.asyncio.Socket
    stdin:zmq.asyncio.Socket
    iopub:zmq.asyncio.Socket
    heartbeat:zmq.asyncio.Socket

    def close(self):
        for f in fields(self):
            try: getattr(self, f.name).close(0)
            except zmq.ZMQError as err: log.debug("socket close failed: %s", err)


class Connection:
    """Client side of a kernel session: five sockets, one connection file, one inbound message stream.

    Every message received on control, shell, stdin or iopub is decoded, tagged with its channel and
    published on `messages`. Order is preserved per channel only.
    """

    def __init__(self, info: ConnectionInfo, channels: Channels, connection_file:str, routing_id:str, strict:bool=False):
        store_attr()
        self.codec = WireCodec(info.key, info.signature_scheme, strict=strict)
        self.messages = Broadcast("messages")
        self.tasks = []
        self.disposed = False

    @classmethod
    async def create(cls, ip:str|None=None, signature_scheme:str=DEFAULT_SCHEME, strict:bool|None=None,
        context: zmq.asyncio.Context|None=None)->"Connection":
        "Connect fresh sockets on free ports, write the connection file, and start receiving."
        ip = ip or os.environ.get("MINIKC_IP") or LOCALHOST
        if strict is None: strict = envbool("MINIKC_STRICT_SIGNATURES")
        ctx = context or zmq.asyncio.Context.instance()
        routing_id = secrets.token_hex(8)
        socks, fname = [], None

        def connect(kind:int, port:int, **opts)->zmq.asyncio.Socket:
            sock = ctx.socket(kind)
            socks.append(sock)
            sock.linger = 0
            for name, value in opts.items(): setattr(sock, name, value)
            sock.connect(f"tcp://{ip}:{port}")
            return sock

        try:
            control_port, shell_port, stdin_port, iopub_port, hb_port = free_ports(ip, 5)
            info = ConnectionInfo(transport="tcp", ip=ip, shell_port=shell_port, iopub_port=iopub_port, stdin_port=stdin_port,
                control_port=control_port, hb_port=hb_port, key=secrets.token_hex(32), signature_scheme=signature_scheme)
            rid = routing_id.encode("ascii")
            channels = Channels(control=connect(zmq.DEALER, control_port, routing_id=rid), shell=connect(zmq.DEALER, shell_port, routing_id=rid),
                stdin=connect(zmq.DEALER, stdin_port, routing_id=rid), iopub=connect(zmq.SUB, iopub_port),
                heartbeat=connect(zmq.PUSH, hb_port))
            channels.iopub.setsockopt(zmq.SUBSCRIBE, b"")
            fname = await asyncio.to_thread(info.write)
            cnx = cls(info, channels, fname, routing_id, strict=strict)
        except BaseException:
            for sock in socks: sock.close(0)
            if fname is not None:
                try: os.unlink(fname)
                except OSError: pass
            raise
        cnx.start()
        log.debug("Connection ready: %s", fname)
        return cnx

    def start(self):
        "Start one receive task per inbound channel."
        for channel in RECV_CHANNELS:
            sock = getattr(self.channels, channel)
            self.tasks.append(asyncio.create_task(self._recv_loop(channel, sock), name=f"{channel}-recv"))

    async def _recv_loop(self, channel:str, sock: zmq.asyncio.Socket):
        try:
            while not self.disposed:
                try: frames = await sock.recv_multipart()
                except zmq.ZMQError as e:
                    dbg(f"{channel} RECV error: {type(e).__name__}: {e}")
                    return
                try: msg = self.codec.decode(frames, channel)
                except ProtocolError as err:
                    log.warning("Dropping undecodable %s message: %s", channel, err)
                    continue
                tlog(log, f"{channel} recv", msg)
                self.messages.publish(msg)
        finally: dbg(f"{channel} RECV EXITING")

    async def send_raw(self, msg: Message):
        "Encode `msg` and hand it to the socket for `msg.channel`; returns once queued locally."
        if msg.channel not in SEND_CHANNELS: raise ValueError(f"cannot send on channel {msg.channel!r}")
        if self.disposed: raise RuntimeError("connection is disposed")
        tlog(log, f"{msg.channel} send", msg)
        await getattr(self.channels, msg.channel).send_multipart(self.codec.encode(msg))

    async def send_and_receive(self, msg: Message):
        """Send `msg`, then yield every inbound message whose parent is `msg`, from any channel.

        Lazy: nothing is subscribed or sent until the first `__anext__`, which subscribes before sending
        so no reply can be missed. Never ends on its own; stop iterating (or use `take_until`) to detach.
        """
        msg_id = msg.msg_id
        async with self.messages.subscribe(lambda m: m.parent_id == msg_id) as replies:
            await self.send_raw(msg)
            async for reply in replies: yield reply

    def dispose(self):
        "Close all sockets and delete the connection file; safe to call more than once."
        if self.disposed: return
        self.disposed = True
        for task in self.tasks: task.cancel()
        self.channels.close()
        self.messages.close()
        try: os.unlink(self.connection_file)
        except OSError: pass  # temp file

    async def __aenter__(self): return self
    async def __aexit__(self, *exc): self.dispose()
