"""Read-only presentation views built from post-mutation state."""

from .presenter import ABSENT, Field, Presenter, View

__all__ = ["ABSENT", "Field", "Presenter", "View"]
