from typing import Optional


class CcodeError(Exception):
    """Base class for all errors surfaced to the command layer."""

    def __init__(
        self,
        message: str,
        group: Optional[str] = None,
        name: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.group = group
        self.name = name
        self.path = path


class NotFound(CcodeError):
    """Requested name is absent in the requested scope."""


class DuplicateName(CcodeError):
    """Insert collided with an existing name."""


class InvalidUrl(CcodeError):
    pass


class MissingField(CcodeError):
    pass


class InvalidRoute(CcodeError):
    """Router rule is not in `provider,model` form."""


class CorruptConfig(CcodeError):
    """Profile store exists but cannot be parsed."""


class CorruptExternalConfig(CcodeError):
    """Router configuration exists but cannot be parsed."""


class UnsupportedVersion(CcodeError):
    pass


class UnknownProvider(CcodeError):
    """Router rule references a provider missing from the provider set."""

    def __init__(self, message: str, providers=(), **kwargs):
        super().__init__(message, **kwargs)
        self.providers = list(providers)


class ProviderInUse(CcodeError):
    """Provider is still referenced by router profiles."""

    def __init__(self, message: str, profiles=(), **kwargs):
        super().__init__(message, **kwargs)
        self.profiles = list(profiles)
