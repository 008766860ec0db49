"""Paged option loading for long remote lists.

PagedOptions walks a paginated endpoint (fetch_list) page by page,
remembers which parent value each page was fetched under, and can hydrate
selected ids that are not on any loaded page yet (fetch_by_ids). Its
accumulated options can be pushed into a Store field with bind(), where
they take part in filtering and cascade delete like any other options.

The loader is transport-agnostic: fetch_list receives a FetchRequest and
returns a FetchResponse, nothing more.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from depselect.async_state import IDLE, LOADING, AsyncState, Error, Success, is_error, is_loading
from depselect.events import EventStream
from depselect.options import are_parent_values_equal, normalize_to_array
from depselect.types import Option, OptionSet

logger = logging.getLogger("depselect.infinite")

DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class FetchRequest:
    current: int  # 1-based page number
    page_size: int
    parent_value: Any = None
    search: str | None = None
    ids: tuple | None = None  # set for hydration requests


@dataclass(frozen=True)
class FetchResponse:
    data: Sequence[Any]
    total: int | None = None
    has_more: bool | None = None


FetchList = Callable[[FetchRequest], Awaitable[FetchResponse]]
FetchByIds = Callable[[list, Any], Awaitable[Sequence[Any]]]


def _default_item_id(item: Any) -> Any:
    return item["id"] if isinstance(item, Mapping) else item.id


def _default_item_label(item: Any) -> str:
    if isinstance(item, Mapping):
        name = item.get("name")
        return str(name if name is not None else item.get("id"))
    name = getattr(item, "name", None)
    return str(name if name is not None else getattr(item, "id", item))


class PagedOptions:
    """Accumulates pages from a paginated source into an option list.

    Usage:
        async def fetch_projects(request):
            page = await api.projects(page=request.current, size=request.page_size,
                                      user_ids=request.parent_value, q=request.search)
            return FetchResponse(page["items"], total=page["total"])

        projects = PagedOptions(fetch_projects, get_item_parent_value=lambda p: p["member_ids"])
        projects.bind(store, "project_ids")
        await projects.load_first(parent_value=store.get_value("user_ids"))
        await projects.load_more()
    """

    def __init__(
        self,
        fetch_list: FetchList,
        *,
        fetch_by_ids: FetchByIds | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        get_item_id: Callable[[Any], Any] | None = None,
        get_item_label: Callable[[Any], str] | None = None,
        get_item_parent_value: Callable[[Any], Any] | None = None,
    ) -> None:
        self._fetch_list = fetch_list
        self._fetch_by_ids = fetch_by_ids
        self.page_size = page_size
        self._get_id = get_item_id or _default_item_id
        self._get_label = get_item_label or _default_item_label
        self._get_parent_value = get_item_parent_value

        self._pages: list[tuple[list, Any]] = []  # (items, parent value fetched under)
        self._hydrated: list[tuple[Any, Any]] = []  # (item, parent value hydrated under)
        self._pending_ids: list = []
        self._next_page: int | None = 1
        self._parent_value: Any = None
        self._search: str | None = None
        self._generation = 0
        self._options = OptionSet()

        self.list_state: AsyncState = IDLE
        self.hydration_state: AsyncState = IDLE
        self.changes: EventStream[PagedOptions] = EventStream()

    # ─── State ───────────────────────────────────────────────────────────

    @property
    def parent_value(self) -> Any:
        return self._parent_value

    @property
    def search_text(self) -> str | None:
        return self._search

    @property
    def has_more(self) -> bool:
        return self._next_page is not None

    @property
    def is_loading(self) -> bool:
        return is_loading(self.list_state)

    @property
    def is_hydrating(self) -> bool:
        return is_loading(self.hydration_state)

    @property
    def error(self) -> BaseException | None:
        for state in (self.list_state, self.hydration_state):
            if isinstance(state, Error):
                return state.error
        return None

    @property
    def items(self) -> list:
        """Hydrated and listed items, one per id; listed items win."""
        merged: dict[Any, Any] = {}
        for item, _ in self._hydrated:
            merged[self._get_id(item)] = item
        for page, _ in self._pages:
            for item in page:
                merged[self._get_id(item)] = item
        return list(merged.values())

    @property
    def options(self) -> OptionSet:
        return self._options

    def selected_items(self, value: Any) -> list:
        wanted = set(normalize_to_array(value))
        return [item for item in self.items if self._get_id(item) in wanted]

    # ─── Loading ─────────────────────────────────────────────────────────

    async def load_first(self, parent_value: Any = None, search: str | None = None) -> OptionSet:
        """Drop loaded pages and fetch page 1 for parent_value/search.

        Hydrated items fetched under a different parent value are dropped too.
        """
        if not are_parent_values_equal(parent_value, self._parent_value):
            self._hydrated = [
                entry for entry in self._hydrated
                if are_parent_values_equal(entry[1], parent_value)
            ]
        self._parent_value = parent_value
        self._search = search or None
        self._pages = []
        self._next_page = 1
        self._generation += 1
        self._rebuild()
        return await self._fetch_page()

    async def load_more(self) -> OptionSet:
        """Fetch the next page, if there is one and no fetch is running."""
        if self._next_page is None or self.is_loading:
            return self._options
        return await self._fetch_page()

    async def search(self, text: str) -> OptionSet:
        return await self.load_first(self._parent_value, text)

    async def reset(self) -> OptionSet:
        return await self.load_first(self._parent_value, None)

    async def retry(self) -> OptionSet:
        """Re-run whichever request failed last."""
        if is_error(self.list_state):
            await self._fetch_page()
        if is_error(self.hydration_state) and self._pending_ids:
            await self.hydrate(self._pending_ids)
        return self._options

    async def hydrate(self, ids: Any) -> list:
        """Fetch selected ids that no loaded page contains."""
        known = {self._get_id(item) for item in self.items}
        missing = [i for i in normalize_to_array(ids) if i not in known]
        if not missing:
            return []

        parent_value = self._parent_value
        self._pending_ids = missing
        self.hydration_state = LOADING
        self._emit()
        try:
            if self._fetch_by_ids is not None:
                fetched = list(await self._fetch_by_ids(missing, parent_value))
            else:
                request = FetchRequest(1, len(missing), parent_value, None, tuple(missing))
                fetched = list((await self._fetch_list(request)).data)
        except Exception as exc:
            logger.warning("Hydrating %s failed: %s", missing, exc, exc_info=True)
            self.hydration_state = Error(exc)
            self._emit()
            return []

        self._pending_ids = []
        if not are_parent_values_equal(parent_value, self._parent_value):
            # parent value changed while hydrating; these ids belong to the old one
            self.hydration_state = IDLE
            self._emit()
            return []
        self._hydrated.extend((item, parent_value) for item in fetched)
        self.hydration_state = Success(fetched)
        self._rebuild()
        self._emit()
        return fetched

    async def _fetch_page(self) -> OptionSet:
        generation = self._generation
        page = self._next_page or 1
        parent_value = self._parent_value
        request = FetchRequest(page, self.page_size, parent_value, self._search)

        self.list_state = LOADING
        self._emit()
        try:
            response = await self._fetch_list(request)
        except Exception as exc:
            if generation == self._generation:
                logger.warning("Fetching page %d failed: %s", page, exc, exc_info=True)
                self.list_state = Error(exc)
                self._emit()
            return self._options

        if generation != self._generation:
            # parent value or search changed while this page was in flight
            return self._options

        data = list(response.data)
        has_more = response.has_more
        if has_more is None:
            has_more = len(data) >= self.page_size
        self._pages.append((data, parent_value))
        self._next_page = page + 1 if has_more else None
        self.list_state = Success(data)
        self._rebuild()
        self._emit()
        return self._options

    # ─── Store integration ───────────────────────────────────────────────

    def bind(self, store, name: str) -> Callable[[], None]:
        """Keep store field name's external options in sync. Returns a disposer."""

        def _push(_: PagedOptions) -> None:
            store.set_external_options(name, self._options)

        _push(self)
        return self.changes.subscribe(_push)

    def _rebuild(self) -> None:
        fetched_under: dict[Any, Any] = {}
        for item, parent_value in self._hydrated:
            fetched_under[self._get_id(item)] = parent_value
        for page, parent_value in self._pages:
            for item in page:
                fetched_under[self._get_id(item)] = parent_value

        options = []
        for item in self.items:
            item_id = self._get_id(item)
            if self._get_parent_value is not None:
                parent_value = self._get_parent_value(item)
            else:
                parent_value = fetched_under.get(item_id)
            options.append(
                Option(self._get_label(item), item_id, parent_value, extra={"item": item})
            )
        self._options = OptionSet(options)

    def _emit(self) -> None:
        self.changes.emit(self)
