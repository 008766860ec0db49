"""Textual integration for depselect. Opt-in, requires textual.

Store notifications can arrive while the widget tree is being rebuilt or
from a loader running on a worker thread. The helpers here drop effects
while the app is not queryable, swallow NoMatches from widget queries, and
marshal off-thread calls through app.call_from_thread.
"""

import threading
from contextlib import ExitStack, contextmanager

from textual.css.query import NoMatches

from depselect.field import reaction as _field_reaction

# Keyed by id(app) so several apps can coexist in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app, store=None):
    """Suspend guarded effects during widget replacement.

    With a store, its notifications are held and flushed after the app is
    unpaused, so effects run once against the rebuilt widget tree.

    Usage:
        with pause(self, store):
            self.query_one("#form").remove_children()
            self.query_one("#form").mount(*new_selects)
            store.set_value("country", "VN")
    """
    key = id(app)
    with ExitStack() as stack:
        if store is not None:
            stack.enter_context(store.batch())
        _paused_apps.add(key)
        try:
            yield
        finally:
            _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, fn):
    main = threading.get_ident()

    def _safe(*args):
        try:
            fn(*args)
        except NoMatches:
            pass

    def _guarded(*args):
        if not is_safe(app):
            return
        if threading.get_ident() != main:
            app.call_from_thread(_safe, *args)
        else:
            _safe(*args)

    return _guarded


def watch_field(app, store, name, effect):
    """Call effect(snapshot) on every notification for field name.

    Usage:
        dispose = watch_field(self, store, "city",
                              lambda s: self.query_one("#city", Select).set_options(...))
    """
    guarded = _guard(app, effect)
    return store.subscribe(name, lambda: guarded(store.get_field_snapshot(name)))


def reaction(app, store, name, data_fn, effect_fn, *, fire_immediately=False):
    """depselect.field.reaction() that safely bridges to Textual widgets."""
    return _field_reaction(
        store, name, data_fn, _guard(app, effect_fn), fire_immediately=fire_immediately
    )
