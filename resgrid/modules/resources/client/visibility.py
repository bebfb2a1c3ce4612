"""
View-triggered page loading.

`ViewportObserver` tracks how far named anchors are from the visible area
and reports enter/exit transitions. `InfiniteScrollTrigger` ties an anchor
at the end of a list to its controller so that scrolling near the end loads
the next page.
"""

import asyncio
from collections.abc import Callable
from typing import Dict, List, Optional

import structlog

from resgrid.modules.resources.client.pagination import InfiniteResourceList
from resgrid.shared.core.config import Settings, get_settings

logger = structlog.get_logger()

VisibilityCallback = Callable[[bool], None]


class ViewportObserver:
    """
    Reports when anchors enter or leave the viewport, extended by a leading margin.

    An anchor counts as visible when its distance below the viewport edge is
    at most `leading_margin`. Callbacks fire only when that changes, plus once
    on subscription if the anchor's position is already known.
    """

    def __init__(self, leading_margin: float = 200.0):
        if leading_margin < 0:
            raise ValueError("leading_margin must be >= 0")
        self.leading_margin = leading_margin
        self._visible: Dict[str, bool] = {}
        self._callbacks: Dict[str, List[VisibilityCallback]] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ViewportObserver":
        settings = settings or get_settings()
        return cls(leading_margin=settings.VISIBILITY_LEADING_MARGIN)

    def observe(self, anchor: str, callback: VisibilityCallback) -> Callable[[], None]:
        """Subscribe to transitions of `anchor`. Returns the unsubscribe function."""
        self._callbacks.setdefault(anchor, []).append(callback)
        if anchor in self._visible:
            callback(self._visible[anchor])

        def _unsubscribe() -> None:
            callbacks = self._callbacks.get(anchor, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return _unsubscribe

    def update(self, anchor: str, distance: float) -> None:
        """Record the anchor's distance below the viewport (<= 0 means on screen)."""
        visible = distance <= self.leading_margin
        if self._visible.get(anchor) == visible:
            return
        self._visible[anchor] = visible
        for callback in list(self._callbacks.get(anchor, [])):
            callback(visible)

    def is_visible(self, anchor: str) -> bool:
        return self._visible.get(anchor, False)


class InfiniteScrollTrigger:
    """
    Loads the next page when the end-of-list anchor becomes visible.

    One load per visibility transition. If the anchor is still visible once a
    load settles successfully (a short page did not push it off screen), the
    next page is requested straight away. A transition that arrives while the
    controller is busy with a load started elsewhere is held until that load
    settles.
    """

    def __init__(
        self,
        controller: InfiniteResourceList,
        observer: ViewportObserver,
        *,
        anchor: str = "resource-list-end",
    ):
        self.controller = controller
        self.observer = observer
        self.anchor = anchor
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._unsubscribe_settled: Optional[Callable[[], None]] = None
        self._pending: Optional["asyncio.Task[None]"] = None
        self._suppressed = False

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    @property
    def pending(self) -> Optional["asyncio.Task[None]"]:
        return self._pending

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.observer.observe(self.anchor, self._on_visibility)
            self._unsubscribe_settled = self.controller.on_settled(self._on_controller_settled)

    def detach(self) -> None:
        """Stop listening and cancel the load this trigger started, if any."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._unsubscribe_settled is not None:
            self._unsubscribe_settled()
            self._unsubscribe_settled = None
        self._suppressed = False
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

    def _on_visibility(self, visible: bool) -> None:
        if visible:
            self._maybe_load()
        else:
            self._suppressed = False

    def _maybe_load(self) -> None:
        if self._pending is not None or not self.attached:
            return
        if not self.controller.has_next_page:
            return
        if self.controller.is_loading:
            self._suppressed = True
            return
        self._suppressed = False
        task = asyncio.get_running_loop().create_task(self.controller.load_next_page())
        self._pending = task
        task.add_done_callback(self._on_settled)

    def _on_controller_settled(self) -> None:
        # Own loads chain from _on_settled.
        if not self._suppressed or self._pending is not None:
            return
        self._suppressed = False
        if self.controller.error is None and self.observer.is_visible(self.anchor):
            self._maybe_load()

    def _on_settled(self, task: "asyncio.Task[None]") -> None:
        self._pending = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("scroll_load_crashed", anchor=self.anchor, error=str(exc))
            return
        if self.controller.error is None and self.observer.is_visible(self.anchor):
            self._maybe_load()
