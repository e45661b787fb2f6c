"""Base class for hook plugins defined in a config module."""

from __future__ import annotations

from typing import Any

from .mailer import Mailer


class SavingsPlugin:
    """Subclass and define methods named after the pipeline stages.

    Example::

        class Plugin(SavingsPlugin):
            def post_parse(self, matches, envelope, aggregate):
                amount = float(matches[0].group(1))
                aggregate.data["total"] = aggregate.data.get("total", 0) + amount
                return True

    Only the stage-named methods a subclass defines are registered as
    hooks.  ``extras`` holds ``SavingsConfig.extras`` and ``mailer`` the
    outbound :class:`~savings_watcher.mailer.Mailer`; both are bound at
    startup, before the first hook runs.
    """

    def __init__(self) -> None:
        self.extras: dict[str, Any] = {}
        self.mailer: Mailer = Mailer(None)

    def bind(self, *, extras: dict[str, Any], mailer: Mailer) -> None:
        self.extras = dict(extras)
        self.mailer = mailer
