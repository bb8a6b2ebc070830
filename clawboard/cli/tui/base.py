"""Base mixin for clawboard TUI widgets."""


class ClawboardMixin:
    """Mixin for widgets that render controlled content.

    Session previews and transcript text come from agents; link markup in them
    must not become clickable.
    """

    auto_links = False
