"""Exceptions raised by the Base64 codec objects and their containers"""


class Base64Error(Exception):
    """Base class for codec errors"""


class MalformedLengthError(Base64Error, ValueError):
    """Base64 text length is not a multiple of 4"""

    def __init__(self, leftover: int):
        self.leftover = leftover
        super().__init__(
            f"malformed base64 input - {leftover} character(s) left over "
            f"after the last complete group"
        )


class CodecStateError(Base64Error, RuntimeError):
    """Operation is not valid in the object's current lifecycle state"""


class CodecFinalizedError(CodecStateError):
    """Object was already finalized or disposed"""

    def __init__(self, name: str):
        super().__init__(f"{name} already finalized")


class CodecBusyError(CodecStateError):
    """Finalize requested while rounds are still scheduled"""

    def __init__(self, name: str, pending: int):
        self.pending = pending
        super().__init__(f"{name} still has {pending} round task(s) in flight")
