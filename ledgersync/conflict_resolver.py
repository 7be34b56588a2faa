"""Conflict resolution for sync.

A conflict is a path changed independently on both sides since the last
sync. This module provides an abstract resolver interface and the three
whole-file strategies: keep a copy of both, local wins, remote wins.
"""

import logging
from abc import ABC, abstractmethod

from ledgersync.config import ConflictStrategy
from ledgersync.transfers import Transfers

logger = logging.getLogger(__name__)


class ConflictResolver(ABC):
    """Abstract interface for resolving sync conflicts."""

    strategy: ConflictStrategy

    @abstractmethod
    def resolve_conflict(self, path: str, transfers: Transfers) -> None:
        """Resolve a conflict on ``path``.

        Args:
            path: Relative path changed on both sides
            transfers: Executor used to move content between the sides

        Raises:
            Any store error; the caller records it as a per-item failure
        """


class LocalWinsResolver(ConflictResolver):
    """Overwrite the remote with the local version."""

    strategy = ConflictStrategy.LOCAL_WINS

    def resolve_conflict(self, path: str, transfers: Transfers) -> None:
        logger.info(f"Conflict on {path}: keeping local version")
        transfers.upload(path)


class RemoteWinsResolver(ConflictResolver):
    """Overwrite the local file with the remote version."""

    strategy = ConflictStrategy.REMOTE_WINS

    def resolve_conflict(self, path: str, transfers: Transfers) -> None:
        logger.info(f"Conflict on {path}: keeping remote version")
        transfers.download(path)


class CopyResolver(ConflictResolver):
    """Keep both versions.

    The local content goes to a timestamped sibling path, which is uploaded so
    every client sees it, then the remote version is downloaded into the
    original path. Nothing is lost.
    """

    strategy = ConflictStrategy.COPY

    def resolve_conflict(self, path: str, transfers: Transfers) -> None:
        if transfers.ctx.local.exists(path):
            conflict_path = transfers.write_conflict_copy(path)
            transfers.ctx.resolved.add(conflict_path)
        transfers.download(path)


_RESOLVERS: dict[ConflictStrategy, type[ConflictResolver]] = {
    ConflictStrategy.COPY: CopyResolver,
    ConflictStrategy.LOCAL_WINS: LocalWinsResolver,
    ConflictStrategy.REMOTE_WINS: RemoteWinsResolver,
}


def create_conflict_resolver(
    strategy: ConflictStrategy | str = ConflictStrategy.COPY,
) -> ConflictResolver:
    """Create the resolver for a configured strategy.

    Raises:
        ValueError: If the strategy name is unknown
    """
    return _RESOLVERS[ConflictStrategy(strategy)]()
