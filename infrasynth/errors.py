"""
Error taxonomy for infrasynth.

Every fatal condition raised by the synthesis pipeline derives from
InfrasynthError so the CLI can report it at the invocation boundary.
"""
from typing import Optional, Sequence


class InfrasynthError(Exception):
    """Base class for all infrasynth errors."""


# --------------------------------------------------------- input errors
class TopologyError(InfrasynthError):
    pass


class DuplicateResourceError(TopologyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"duplicate resource name '{name}' in topology")


class DanglingReferenceError(TopologyError):
    def __init__(self, resource: str, missing: str):
        self.resource = resource
        self.missing = missing
        super().__init__(
            f"resource '{resource}' references '{missing}', which does not exist in the topology"
        )


# --------------------------------------------------------- synthesis errors
class SynthesisError(InfrasynthError):
    pass


class IdentifierCollisionError(SynthesisError):
    def __init__(self, first: str, second: str, identifier: str, family: str = "platform name"):
        self.first, self.second = sorted((first, second))
        self.identifier = identifier
        self.family = family
        super().__init__(
            f"'{self.first}' and '{self.second}' both derive the {family} '{identifier}'; "
            "rename one of them"
        )


class IncompleteResourceError(SynthesisError):
    def __init__(self, resource: str, reason: str):
        self.resource = resource
        self.reason = reason
        super().__init__(f"resource '{resource}' cannot be synthesized: {reason}")


class ExposureError(SynthesisError):
    def __init__(self, resource: str, reason: str = "it does not serve network traffic"):
        self.resource = resource
        super().__init__(f"resource '{resource}' cannot be exposed: {reason}")


# --------------------------------------------------------- persistence
class PersistenceError(InfrasynthError):
    def __init__(self, path: str, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"failed to save environment configuration to {path}{detail}")


# --------------------------------------------------------- merge
class MergeError(InfrasynthError):
    def __init__(self, path: str, cause: Optional[BaseException] = None, copied: Sequence[str] = ()):
        self.path = path
        self.cause = cause
        self.copied = list(copied)
        detail = f": {cause}" if cause else ""
        super().__init__(f"failed to write {path}{detail}")


# --------------------------------------------------------- interactive
class UserAbortError(InfrasynthError):
    def __init__(self, prompt: str):
        self.prompt = prompt
        super().__init__(f"aborted by user at prompt: {prompt}")


class NonInteractiveError(InfrasynthError):
    def __init__(self, prompt: str, choices: Sequence[str] = ()):
        self.prompt = prompt
        self.choices = list(choices)
        hint = f" (pending: {', '.join(self.choices)})" if self.choices else ""
        super().__init__(
            f"'{prompt}' requires an answer but prompting is disabled{hint}"
        )


# --------------------------------------------------------- discovery
class DiscoveryError(InfrasynthError):
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"cannot read topology from {source}: {reason}")


class DiscoveryCancelledError(InfrasynthError):
    def __init__(self, source: str):
        self.source = source
        super().__init__(f"discovery of {source} was cancelled")
