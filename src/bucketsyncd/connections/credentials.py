"""
Credential resolution for configured remotes.

Inbound workflows name their remote; outbound destinations are matched on
the endpoint host.
"""

from __future__ import annotations

from collections.abc import Iterable

from bucketsyncd.exceptions import CredentialsNotFoundError
from bucketsyncd.sync.types import Remote


class CredentialResolver:
    """
    Read-only lookup over the configured remotes.

    Remotes never change after load, so one resolver is shared by every
    pipeline without locking.
    """

    def __init__(self, remotes: Iterable[Remote]):
        self._remotes: tuple[Remote, ...] = tuple(remotes)

    @property
    def remotes(self) -> tuple[Remote, ...]:
        return self._remotes

    def by_name(self, name: str) -> Remote | None:
        """First remote with this name."""
        for remote in self._remotes:
            if remote.name == name:
                return remote
        return None

    def by_endpoint(self, host: str) -> Remote | None:
        """First remote whose endpoint equals ``host`` (case-sensitive)."""
        for remote in self._remotes:
            if remote.endpoint == host:
                return remote
        return None

    def require_by_name(self, name: str) -> Remote:
        remote = self.by_name(name)
        if remote is None:
            raise CredentialsNotFoundError(name=name)
        return remote

    def require_by_endpoint(self, host: str) -> Remote:
        remote = self.by_endpoint(host)
        if remote is None:
            raise CredentialsNotFoundError(endpoint=host)
        return remote

    def __len__(self) -> int:
        return len(self._remotes)
