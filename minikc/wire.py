"""Signed multipart framing for Jupyter protocol messages.

Layout on the wire: `[*idents, b"<IDS|MSG>", signature, header, parent_header, metadata, content, *buffers]`.
The signature is an HMAC (per `signature_scheme`) over the four JSON blobs, hex encoded. An empty key
disables signing: the signature frame is empty and verification always passes.

Signature mismatches are soft by default: the message is logged and still delivered. Pass `strict=True`
to raise `SignatureError` instead.
"""
import hmac, logging
from jupyter_client.session import DELIM, Session
from .errors import ProtocolError, SignatureError
from .messages import Message

log = logging.getLogger("minikc.wire")
DEFAULT_SCHEME = "hmac-sha256"


class WireCodec:
    def __init__(self, key:str|bytes="", signature_scheme:str=DEFAULT_SCHEME, strict:bool=False):
        "Codec signing with `key` (hex string or bytes) under `signature_scheme`."
        if isinstance(key, str): key = key.encode("ascii")
        self.strict = strict
        self.session = Session(key=key, signature_scheme=signature_scheme)

    @property
    def key(self)->bytes: return self.session.key

    @property
    def signature_scheme(self)->str: return self.session.signature_scheme

    def sign(self, parts: list[bytes])->bytes:
        "HMAC hexdigest over `parts`; empty when the key is empty."
        return self.session.sign(parts)

    def encode(self, msg: Message, idents: list[bytes]|None=None)->list[bytes]:
        "Serialize and sign `msg` into multipart frames."
        pack = self.session.pack
        parts = [pack(msg.header), pack(msg.parent_header or {}), pack(msg.metadata or {}), pack(msg.content or {})]
        frames = list(idents or []) + [DELIM, self.sign(parts)] + parts
        if msg.buffers is not None: frames.append(bytes(msg.buffers))
        return frames

    def split(self, frames: list)->tuple[list[bytes], list[bytes]]:
        "Split `frames` into (idents, message parts) at the delimiter."
        frames = [bytes(f.bytes if hasattr(f, "bytes") else f) for f in frames]
        try: idx = frames.index(DELIM)
        except ValueError: raise ProtocolError("missing <IDS|MSG> delimiter") from None
        idents, parts = frames[:idx], frames[idx + 1:]
        if len(parts) < 5: raise ProtocolError(f"malformed message: expected at least 5 frames, got {len(parts)}")
        return idents, parts

    def _unpack(self, blob: bytes, name:str)->dict:
        try: obj = self.session.unpack(blob)
        except ValueError as err: raise ProtocolError(f"invalid JSON in {name}: {err}") from err
        if not isinstance(obj, dict): raise ProtocolError(f"{name} is not a JSON object")
        return obj

    def decode(self, frames: list, channel:str|None=None)->Message:
        "Verify and parse `frames` into a `Message` tagged with `channel`."
        _idents, parts = self.split(frames)
        signature, blobs, extra = parts[0], parts[1:5], parts[5:]
        if self.key:
            expected = self.sign(blobs)
            if not hmac.compare_digest(expected, signature):
                if self.strict: raise SignatureError(expected, signature)
                log.warning("Bad message signature on %s channel; delivering anyway", channel or "?")
        header, parent, metadata, content = (self._unpack(b, n) for b, n in zip(blobs, ("header", "parent_header", "metadata", "content")))
        return Message(header=header, parent_header=parent, metadata=metadata, content=content,
            buffers=b"".join(extra) if extra else None, channel=channel)


def encode(msg: Message, key:str|bytes, scheme:str=DEFAULT_SCHEME, idents: list[bytes]|None=None)->list[bytes]:
    "Encode `msg` into signed frames."
    return WireCodec(key, scheme).encode(msg, idents)


def decode(frames: list, key:str|bytes, scheme:str=DEFAULT_SCHEME, channel:str|None=None, strict:bool=False)->Message:
    "Decode signed frames into a `Message`."
    return WireCodec(key, scheme, strict=strict).decode(frames, channel)
