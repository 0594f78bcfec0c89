from __future__ import annotations


class MediaError(Exception):
    """Base class for errors raised by the media services."""


class InvalidRequestError(MediaError):
    pass


class AssetNotFoundError(MediaError):
    pass


class NotAVideoError(MediaError):
    pass


class AssetNotReadyError(MediaError):
    pass


class StorageError(MediaError):
    pass


class QueueError(MediaError):
    pass


class PoisonMessageError(MediaError):
    """A queued payload that cannot be decoded into a job."""


class CommandError(MediaError):
    def __init__(self, args: list[str], returncode: int, stderr: str = "") -> None:
        self.cmd = list(args)
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        msg = f"{self.cmd[0] if self.cmd else 'command'} exited with status {returncode}"
        if tail:
            msg = f"{msg}: {tail}"
        super().__init__(msg)
