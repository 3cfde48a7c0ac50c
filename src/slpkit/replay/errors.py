from __future__ import annotations


class DecodeError(ValueError):
    """Base class for capture decode failures.

    `offset` is the byte offset into the event stream where decoding stopped,
    when known.
    """

    def __init__(self, message: str, *, offset: int | None = None) -> None:
        super().__init__(message)
        self.offset = offset


class MalformedContainer(DecodeError):
    pass


class MissingCatalog(DecodeError):
    pass


class UnknownEventKind(DecodeError):
    def __init__(self, code: int, *, offset: int | None = None) -> None:
        super().__init__(f"unknown event kind 0x{int(code):02x} at offset {offset}", offset=offset)
        self.code = int(code)


class TruncatedStream(DecodeError):
    pass


class VersionPolicyViolation(DecodeError):
    pass
