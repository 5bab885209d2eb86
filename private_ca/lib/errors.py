"""Error taxonomy for CA lifecycle operations.

Every error is terminal for the command that raised it. The CLI reports the
message and exits non-zero; nothing is retried or rolled back.
"""


class CAError(Exception):
    """Base class for all CA lifecycle errors."""


class AlreadyInitialized(CAError):
    """CA directory already holds a certificate (or already exists for create)."""


class MissingConfig(CAError):
    """Required configuration document or field is absent."""


class MissingTemplate(CAError):
    """CA has no host template to render host configs from."""


class InvalidParent(CAError):
    """Parent CA reference does not point at an initialized CA."""


class HostAlreadyExists(CAError):
    """Host workspace directory already exists."""


class NoValidCertificate(CAError):
    """Ledger has no valid record for the requested common name."""


class BackendFailure(CAError):
    """Crypto backend call failed."""


class StoreCorruption(CAError):
    """Ledger, serial or CRL number state is unreadable."""


class DestroyAborted(CAError):
    """Destroy confirmation phrase did not match."""
