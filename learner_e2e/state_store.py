"""Contract for querying learned dependency state.

Whether and where the filter persists what it learns is not settled, so the
harness only defines what it needs to ask: which destinations a caller is
known to depend on. Implementations decide how that is stored.
"""

from typing import Protocol, Set, runtime_checkable


@runtime_checkable
class DependencyStateStore(Protocol):
    """Queryable store of learned caller -> destination dependencies."""

    def learned_dependencies(self, caller: str) -> Set[str]:
        """Destinations (upstream cluster names) learned for ``caller``.

        Raises UnavailableError when the store cannot be reached.
        """
        ...
