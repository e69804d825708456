"Debug infrastructure for minikc with tiered logging and faulthandler support."
import faulthandler, logging, os, signal, sys, threading
from fastcore.basics import str2bool

def envbool(name: str, default: bool=False)->bool:
    "Return env var `name` parsed as a bool, or `default` on missing/invalid."
    v = (os.environ.get(name) or "").strip()
    if not v: return default
    try: return bool(str2bool(v))
    except ValueError: return default

enabled = envbool("MINIKC_DEBUG")
trace_msgs = envbool("MINIKC_DEBUG_MSGS")
_lock = threading.Lock()

def dbg(*args, **kw):
    if enabled:
        with _lock: print("[minikc]", *args, **kw, file=sys.__stderr__, flush=True)

def setup():
    "Initialize debug infrastructure: logging, faulthandler, SIGUSR1 handler."
    if not enabled: return
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.DEBUG, stream=sys.__stderr__,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    faulthandler.enable(file=sys.__stderr__)
    if hasattr(signal, "SIGUSR1"): faulthandler.register(signal.SIGUSR1, file=sys.__stderr__)

def tlog(log, prefix: str, msg):
    "Log message flow at high level: channel, msg_type, msg_id, parent msg_id."
    if not trace_msgs: return
    log.warning("%s channel=%s type=%s id=%s parent=%s", prefix, msg.channel, msg.msg_type, msg.msg_id, msg.parent_id)
