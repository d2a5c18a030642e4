"""Exception types shared by the kink operator services."""


class KinkError(Exception):
    """Base class for all operator errors."""


class NotFoundError(KinkError):
    """The requested object does not exist in the store."""


class TransientError(KinkError):
    """A store call failed in a way that a later retry may fix."""


class ConflictError(TransientError):
    """A write lost an optimistic-concurrency race or the object already exists."""


class ConfigurationError(KinkError):
    """Input the operator cannot act on until a person fixes it.

    Retrying cannot fix these, so the reconciler records ``reason`` on the
    control plane status instead of requeueing.
    """

    reason = "InvalidConfiguration"


class CatalogError(ConfigurationError):
    """The static certificate catalog is inconsistent."""

    reason = "InvalidCertificateCatalog"


class UnresolvedCAError(CatalogError):
    """A certificate names a CA that is not part of the catalog."""

    def __init__(self, cert_name, ca_name):
        self.cert_name = cert_name
        self.ca_name = ca_name
        super().__init__(f"certificate {cert_name!r} references unknown CA {ca_name!r}")


class InvalidCredentialError(ConfigurationError):
    """A stored credential does not hold decodable PEM material."""

    reason = "InvalidCredential"


class InvalidClusterNetworkError(ConfigurationError):
    """The cluster's service network cannot be parsed."""

    reason = "InvalidClusterNetwork"
