"""Platform adapter contract. Concrete platform clients live outside this package."""

from crossrelay.adapters.base import AdapterBase, MentionResolver

__all__ = ["AdapterBase", "MentionResolver"]
