"Jupyter protocol message model and request builders."
import getpass, uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from jupyter_client.session import new_id

PROTOCOL_VERSION = "5.3"
SEND_CHANNELS = ("control", "shell", "stdin")
RECV_CHANNELS = ("control", "shell", "stdin", "iopub")
CONTROL_TYPES = {"shutdown_request", "interrupt_request", "debug_request"}

_session_id = new_id()

def _username()->str:
    try: return getpass.getuser()
    except (KeyError, OSError): return "username"


@dataclass
class Message:
    header:dict
    parent_header:dict = field(default_factory=dict)
    metadata:dict = field(default_factory=dict)
    content:dict = field(default_factory=dict)
    buffers:bytes|None = None
    channel:str|None = None

    @property
    def msg_id(self)->str|None: return self.header.get("msg_id")

    @property
    def msg_type(self)->str|None: return self.header.get("msg_type")

    @property
    def parent_id(self)->str|None: return (self.parent_header or {}).get("msg_id")

    def to_dict(self)->dict:
        "Return the message as a jupyter_client-style dict."
        return dict(header=self.header, msg_id=self.msg_id, msg_type=self.msg_type, parent_header=self.parent_header,
            metadata=self.metadata, content=self.content, buffers=self.buffers, channel=self.channel)


def new_header(msg_type:str, session:str|None=None)->dict:
    "Build a fresh header with a unique `msg_id`."
    return dict(msg_id=uuid.uuid4().hex, msg_type=msg_type, username=_username(), session=session or _session_id,
        date=datetime.now(timezone.utc).isoformat(), version=PROTOCOL_VERSION)


def make_message(msg_type:str, content:dict|None=None, channel:str|None=None, parent:Message|None=None,
    metadata:dict|None=None, buffers:bytes|None=None, session:str|None=None)->Message:
    "Create a request `Message`; control-only types default to the control channel."
    if channel is None: channel = "control" if msg_type in CONTROL_TYPES else "shell"
    parent_header = dict(parent.header) if parent is not None else {}
    return Message(header=new_header(msg_type, session), parent_header=parent_header, metadata=metadata or {},
        content=content or {}, buffers=buffers, channel=channel)


def execute_request(code:str, silent:bool=False, store_history:bool=True, user_expressions:dict|None=None,
    allow_stdin:bool=False, stop_on_error:bool=True, **kwargs)->Message:
    content = dict(code=code, silent=silent, store_history=store_history, user_expressions=user_expressions or {},
        allow_stdin=allow_stdin, stop_on_error=stop_on_error)
    return make_message("execute_request", content, **kwargs)

def kernel_info_request(**kwargs)->Message: return make_message("kernel_info_request", **kwargs)

def shutdown_request(restart:bool=False, **kwargs)->Message: return make_message("shutdown_request", dict(restart=restart), **kwargs)

def interrupt_request(**kwargs)->Message: return make_message("interrupt_request", **kwargs)

def complete_request(code:str, cursor_pos:int, **kwargs)->Message:
    return make_message("complete_request", dict(code=code, cursor_pos=cursor_pos), **kwargs)

def inspect_request(code:str, cursor_pos:int, detail_level:int=0, **kwargs)->Message:
    return make_message("inspect_request", dict(code=code, cursor_pos=cursor_pos, detail_level=detail_level), **kwargs)

def is_complete_request(code:str, **kwargs)->Message: return make_message("is_complete_request", dict(code=code), **kwargs)

def input_reply(value:str, parent:Message, **kwargs)->Message:
    "Answer a kernel `input_request` on the stdin channel."
    return make_message("input_reply", dict(value=value), channel="stdin", parent=parent, **kwargs)
