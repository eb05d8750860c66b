from __future__ import annotations


class DrawbatchError(Exception):
    pass


class ConfigurationError(DrawbatchError):
    """A job (or the whole run) is missing input it cannot do without."""


class InvocationFailure(DrawbatchError):
    """The host could not be started, crashed, or exceeded its time limit."""


class OutputDirectoryUnavailable(InvocationFailure):
    pass


class BatchAlreadyRunning(DrawbatchError):
    pass
