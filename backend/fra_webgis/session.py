from typing import Any, Dict, List, Optional

import httpx

from . import settings
from .client import WebGISClient
from .controller import DataController
from .errors import FetchError, ReloadSuperseded
from .models import FeatureSummary, LayerView
from .profiles import DataProfile, get_profile
from .registry import LayerRegistry, RenderSurface
from .resolver import DetailResolver
from .utils.logging import get_logger

logger = get_logger(__name__)


class ViewerSession:
    """Everything one map viewer needs, owned in one place.

    The session holds the current filters, the layer set and the detail
    cache; nothing is kept in module globals.
    """

    def __init__(
        self,
        profile: DataProfile,
        client: WebGISClient,
        surface: Optional[RenderSurface] = None,
        debounce: float = settings.RELOAD_DEBOUNCE,
        detail_cache_size: Optional[int] = None,
    ):
        self.profile = profile
        self.client = client
        self.registry = LayerRegistry(profile.style_table(), surface=surface)
        self.controller = DataController(client, self.registry, debounce=debounce)
        self.resolver = DetailResolver(client, max_size=detail_cache_size)
        self.filter_options: Dict[str, List[str]] = {}

    @classmethod
    def create(
        cls,
        profile: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> "ViewerSession":
        data_profile = get_profile(profile or settings.WEBGIS_PROFILE)
        client = WebGISClient(
            base_url or settings.WEBGIS_API_BASE_URL,
            data_profile,
            timeout=settings.WEBGIS_TIMEOUT,
            retry_attempts=kwargs.pop('retry_attempts', settings.WEBGIS_RETRY_ATTEMPTS),
            retry_wait=kwargs.pop('retry_wait', settings.WEBGIS_RETRY_WAIT),
            filter_options_ttl=settings.FILTER_OPTIONS_TTL,
            transport=transport,
        )
        kwargs.setdefault('detail_cache_size', settings.DETAIL_CACHE_MAX_SIZE or None)
        return cls(data_profile, client, **kwargs)

    async def __aenter__(self):
        self.client.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def bootstrap(self) -> Optional[FeatureSummary]:
        """Load filter options and layer hints, then the unfiltered data.

        Failures of the option and layer lists are logged and skipped; a
        failed data load is reported on the controller's status channel.
        A first load overtaken by a newer reload returns the latest loaded
        summary instead.
        """
        self.client.open()

        try:
            self.filter_options = await self.client.filter_options()
        except FetchError as exc:
            logger.warning(f"Error loading filter options: {exc}")

        try:
            self.registry.seed_preferences(await self.client.layer_hints())
        except FetchError as exc:
            logger.warning(f"Error loading layers: {exc}")

        try:
            await self.controller.check_availability()
            return await self.controller.reload(force=True)
        except ReloadSuperseded:
            logger.info("Initial data load overtaken by a newer reload")
            return self.controller.current_summary()
        except FetchError as exc:
            logger.error(f"Error loading initial data: {exc}")
            return None

    async def panel(self, name: str) -> Any:
        return await self.client.panel(name)

    def layer_views(self) -> List[LayerView]:
        return [
            LayerView(
                category=layer.category,
                name=layer.name,
                count=layer.count,
                visible=layer.visible,
                style=layer.style,
                fallbackStyle=layer.fallback_style,
                bounds=layer.bounds,
            )
            for layer in self.registry.layers()
        ]
