from __future__ import annotations


class DiscoveryError(RuntimeError):
    """Base class for failures that abort a discovery run."""

    retryable: bool = True


class FeedFetchError(DiscoveryError):
    """The activity feed could not deliver a page. Retrying resumes from the persisted cursor."""


class CacheError(DiscoveryError):
    """Reading or persisting discovery state failed. The current page is not committed."""


class DerivationInvariantError(DiscoveryError):
    """
    Feed data and locally derived secrets disagree (e.g. a withdrawal larger
    than the note it spends). Retrying reproduces the same failure.
    """

    retryable = False


class ChainIntegrityError(DerivationInvariantError):
    """A note chain violates its structural invariants (index gaps, label drift, status)."""
