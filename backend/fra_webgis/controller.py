import asyncio
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional

from .classifier import classify
from .client import WebGISClient
from .errors import DataUnavailable, FetchError, ReloadSuperseded
from .filters import EMPTY_SNAPSHOT, FilterSnapshot, FilterState
from .models import CategoryCount, FeatureSummary, StatusMessage
from .registry import LayerRegistry
from .utils.logging import get_logger

logger = get_logger(__name__)

StatusListener = Callable[[StatusMessage], None]


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class DataController:
    """Single owner of what data is currently displayed.

    Each reload takes a generation number. Only the response for the most
    recent generation may touch the registry, so a slow response for an
    older filter snapshot can never overwrite newer layers.
    """

    def __init__(
        self,
        client: WebGISClient,
        registry: LayerRegistry,
        filter_state: Optional[FilterState] = None,
        debounce: float = 0.3,
    ):
        self.client = client
        self.registry = registry
        self.filter_state = filter_state or FilterState()
        self.debounce = debounce
        self.status = StatusMessage()
        self._state = LoadState.IDLE
        self._generation = 0
        self._snapshot: FilterSnapshot = EMPTY_SNAPSHOT
        self._loaded_snapshot: Optional[FilterSnapshot] = None
        self._summary: Optional[FeatureSummary] = None
        self._pending: Optional["asyncio.Task[FeatureSummary]"] = None
        self._status_listeners: List[StatusListener] = []

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def current_snapshot(self) -> FilterSnapshot:
        """The most recently requested filter snapshot."""
        return self._snapshot

    def current_summary(self) -> Optional[FeatureSummary]:
        return self._summary

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _set_status(self, level: str, message: str) -> None:
        self.status = StatusMessage(level=level, message=message)
        for listener in self._status_listeners:
            listener(self.status)

    async def check_availability(self) -> bool:
        if self.client.profile.status_path is None:
            return True

        status = await self.client.status()
        if not status.data_available:
            message = "No classified data available. Please run the classification script first."
            self._set_status("error", f"Error: {message}")
            raise DataUnavailable(message)
        return True

    async def reload(self, snapshot: Optional[FilterSnapshot] = None, force: bool = False) -> FeatureSummary:
        if snapshot is None:
            snapshot = self._snapshot

        if (
            not force
            and self._state is LoadState.LOADED
            and self._summary is not None
            and snapshot == self._loaded_snapshot
        ):
            logger.debug("Filters unchanged; skipping reload")
            self._snapshot = snapshot
            return self._summary

        self._generation += 1
        generation = self._generation
        self._snapshot = snapshot
        self._state = LoadState.LOADING
        self._set_status("loading", "Loading data...")

        try:
            features = await self.client.fetch_features(snapshot)
        except FetchError as exc:
            if generation != self._generation:
                logger.info(
                    "Discarding failure of superseded reload",
                    extra={'generation': generation, 'latest': self._generation}
                )
                raise ReloadSuperseded(generation, self._generation) from exc
            self._state = LoadState.FAILED
            self._set_status("error", f"Failed to load data: {exc}")
            logger.error(
                f"Reload failed: {exc}",
                extra={'generation': generation, 'error_type': type(exc).__name__}
            )
            raise
        except asyncio.CancelledError:
            if generation == self._generation:
                self._restore_after_cancel()
            raise

        if generation != self._generation:
            logger.info(
                "Discarding superseded response",
                extra={'generation': generation, 'latest': self._generation}
            )
            raise ReloadSuperseded(generation, self._generation)

        grouped = classify(features)
        self.registry.replace(grouped)

        summary = FeatureSummary(
            total=len(features),
            categories=[
                CategoryCount(category=category, count=len(bucket))
                for category, bucket in grouped.items()
            ],
            fallback_categories=[
                layer.category for layer in self.registry.layers() if layer.fallback_style
            ],
            filters=snapshot.to_query_params(),
        )
        self._summary = summary
        self._loaded_snapshot = snapshot
        self._state = LoadState.LOADED
        self._set_status("success", self._loaded_message(summary))
        return summary

    def _loaded_message(self, summary: FeatureSummary) -> str:
        return f"Loaded {summary.total:,} {self.client.profile.noun}"

    def _restore_after_cancel(self) -> None:
        if self._summary is None:
            self._state = LoadState.IDLE
            self._set_status("info", "")
            return
        self._state = LoadState.LOADED
        self._snapshot = self._loaded_snapshot
        self._set_status("success", self._loaded_message(self._summary))

    def reload_debounced(
        self,
        snapshot: Optional[FilterSnapshot] = None,
        delay: Optional[float] = None,
    ) -> "asyncio.Task[FeatureSummary]":
        """Schedule a reload after ``delay`` seconds, replacing any pending one."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

        wait = self.debounce if delay is None else delay
        task = asyncio.ensure_future(self._reload_later(snapshot, wait))
        task.add_done_callback(self._log_task_outcome)
        self._pending = task
        return task

    async def _reload_later(self, snapshot: Optional[FilterSnapshot], delay: float) -> FeatureSummary:
        await asyncio.sleep(delay)
        return await self.reload(snapshot)

    @staticmethod
    def _log_task_outcome(task: "asyncio.Task[FeatureSummary]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, ReloadSuperseded):
            logger.debug(str(exc))
        elif exc is not None:
            logger.warning(f"Debounced reload failed: {exc}")

    async def apply_filters(self, fields: Mapping[str, Any], force: bool = False) -> FeatureSummary:
        return await self.reload(self.filter_state.apply(fields), force=force)

    async def clear_filters(self) -> FeatureSummary:
        return await self.reload(self.filter_state.clear())

    async def export(self, snapshot: Optional[FilterSnapshot] = None) -> Any:
        """Fetch the export payload for ``snapshot`` (default: current filters)."""
        if snapshot is None:
            snapshot = self._snapshot
        logger.info("Exporting data", extra={'filters': snapshot.to_query_params()})
        return await self.client.export(snapshot)
