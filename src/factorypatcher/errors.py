"""
Exception types for FactoryPatcher.

Only PatchDefinitionError ever reaches consumer code (at register time).
Everything raised while the host runtime is loading modules is caught and
logged at the smallest boundary.
"""


class PatcherError(Exception):
    """Base class for all FactoryPatcher errors."""


class PatchDefinitionError(PatcherError, ValueError):
    """A patch or replacement rule is malformed."""


class PatchCompileError(PatcherError):
    """Edited factory text could not be turned back into a callable."""

    def __init__(self, label: str, message: str, source: str = ""):
        super().__init__(f"{label}: {message}")
        self.label = label
        self.source = source
