"Structured failures reported by the kernel client core."


class KernelClientError(Exception): "Base class for minikc errors."


class DiscoveryError(KernelClientError):
    "A single kernel.json could not be loaded; discovery skips it."

    def __init__(self, path, reason:str):
        super().__init__(f"Invalid kernel spec {path}: {reason}")
        self.path, self.reason = path, reason


class LaunchError(KernelClientError): "The kernel process could not be started."


class KernelExitError(LaunchError):
    "The kernel process exited with a non-zero code that we did not cause."

    def __init__(self, code:int):
        super().__init__(f"Kernel exited with code {code}")
        self.code = code


class ProtocolError(KernelClientError, ValueError): "A wire message could not be decoded."


class SignatureError(ProtocolError):
    "HMAC signature did not match; only raised when verification is strict."

    def __init__(self, expected:bytes, received:bytes):
        super().__init__("Invalid message signature")
        self.expected, self.received = expected, received
