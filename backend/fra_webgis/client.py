import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import MalformedPayload, NetworkError, ServerError
from .filters import FilterSnapshot
from .models import DetailRecord, Feature, LayerHint, StatusPayload
from .profiles import DataProfile
from .utils.cache import SimpleCache
from .utils.logging import get_logger

logger = get_logger(__name__)

# Aggregate endpoints whose payloads are passed through for display only
PANEL_PATHS = {
    "statistics": "/api/statistics",
    "fra-progress": "/api/fra-progress",
    "performance": "/api/performance",
    "analytics": "/api/analytics",
}

FILTER_OPTIONS_PATH = "/api/filter-options"
LAYERS_PATH = "/api/layers"
EXPORT_PATH = "/api/export"
DETAIL_PATH = "/api/claim/{entity_id}"


def parse_feature(raw: Any, profile: DataProfile, index: int) -> Feature:
    """Validate one GeoJSON feature and resolve its category and id."""
    if not isinstance(raw, dict):
        raise MalformedPayload(f"Feature {index} is not an object")

    properties = raw.get('properties') or {}
    if not isinstance(properties, dict):
        raise MalformedPayload(f"Feature {index} has non-object properties")

    geometry = raw.get('geometry')
    if geometry is not None and not isinstance(geometry, dict):
        raise MalformedPayload(f"Feature {index} has a non-object geometry")

    category = properties.get(profile.category_field)
    if category is not None and not isinstance(category, str):
        category = str(category)

    entity_id = None
    for key in profile.id_fields:
        value = properties.get(key)
        if value not in (None, ""):
            entity_id = value
            break
    if entity_id is None:
        entity_id = raw.get('id')
    if entity_id in (None, ""):
        raise MalformedPayload(
            f"Feature {index} has no identifier (looked for {', '.join(profile.id_fields)} and id)"
        )

    return Feature(
        id=str(entity_id),
        category=category,
        geometry=geometry,
        properties=properties,
    )


def parse_feature_collection(payload: Any, profile: DataProfile) -> List[Feature]:
    if not isinstance(payload, dict):
        raise MalformedPayload("Expected a JSON object with a features array")
    features = payload.get('features')
    if not isinstance(features, list):
        raise MalformedPayload("Invalid data format: missing features array")
    return [parse_feature(raw, profile, index) for index, raw in enumerate(features)]


class WebGISClient:
    """Async client for the WebGIS data API.

    Transport failures surface as ``NetworkError`` and are retried;
    error statuses and ``{"error": ...}`` payloads surface as
    ``ServerError``; unexpected shapes as ``MalformedPayload``.
    """

    def __init__(
        self,
        base_url: str,
        profile: DataProfile,
        timeout: float = 20,
        retry_attempts: int = 3,
        retry_wait: float = 1,
        filter_options_ttl: int = 900,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.profile = profile
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait = retry_wait
        self.transport = transport
        self.options_cache = SimpleCache(max_size=16, ttl=filter_options_ttl)
        self.session: Optional[httpx.AsyncClient] = None
        self.request_count = 0

    async def __aenter__(self):
        self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def open(self) -> None:
        if self.session is None:
            self.session = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            )

    async def aclose(self) -> None:
        if self.session is not None:
            await self.session.aclose()
            self.session = None

    async def _request_json(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        if self.session is None:
            raise RuntimeError("WebGISClient used outside of its context")

        self.request_count += 1
        try:
            response = await self.session.get(path, params=dict(params) if params else None)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Request to {path} failed: {exc}") from exc

        if response.is_error:
            message = f"HTTP error! status: {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get('error'):
                message = str(body['error'])
            logger.error(
                "WebGIS API returned an error status",
                extra={'path': path, 'status_code': response.status_code}
            )
            raise ServerError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedPayload(f"Response from {path} is not valid JSON") from exc

        if isinstance(payload, dict) and payload.get('error'):
            logger.error(f"WebGIS API error: {payload['error']}", extra={'path': path})
            raise ServerError(str(payload['error']), status_code=response.status_code)

        return payload

    async def get_json(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=self.retry_wait * 10),
            retry=retry_if_exception_type(NetworkError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._request_json, path, params)

    async def status(self) -> StatusPayload:
        path = self.profile.status_path or "/status"
        payload = await self.get_json(path)
        try:
            return StatusPayload.model_validate(payload)
        except ValidationError as exc:
            raise MalformedPayload(f"Unexpected status payload: {exc}") from exc

    async def fetch_features(self, snapshot: FilterSnapshot) -> List[Feature]:
        logger.info(
            "Fetching features",
            extra={'profile': self.profile.name, 'filters': snapshot.to_query_params()}
        )
        payload = await self.get_json(self.profile.data_path, snapshot.to_query_params())
        features = parse_feature_collection(payload, self.profile)
        logger.info(f"Received {len(features)} {self.profile.noun}")
        return features

    async def filter_options(self) -> Dict[str, List[str]]:
        cached = self.options_cache.get(FILTER_OPTIONS_PATH)
        if cached is not None:
            return cached

        payload = await self.get_json(FILTER_OPTIONS_PATH)
        if not isinstance(payload, dict):
            raise MalformedPayload("Filter options must be a JSON object")

        options: Dict[str, List[str]] = {}
        for field_name, values in payload.items():
            if not isinstance(values, list):
                logger.warning("Ignoring non-list filter options", extra={'field': field_name})
                continue
            options[field_name] = [str(value) for value in values if value not in (None, "")]

        self.options_cache.set(FILTER_OPTIONS_PATH, options)
        return options

    async def layer_hints(self) -> Dict[str, LayerHint]:
        payload = await self.get_json(LAYERS_PATH)
        if not isinstance(payload, dict):
            raise MalformedPayload("Layer list must be a JSON object")
        try:
            return {key: LayerHint.model_validate(value) for key, value in payload.items()}
        except ValidationError as exc:
            raise MalformedPayload(f"Unexpected layer list: {exc}") from exc

    async def panel(self, name: str) -> Any:
        try:
            path = PANEL_PATHS[name]
        except KeyError:
            raise ValueError(f"Unknown panel '{name}'") from None
        return await self.get_json(path)

    async def detail(self, entity_id: str) -> DetailRecord:
        path = DETAIL_PATH.format(entity_id=quote(str(entity_id), safe=''))
        payload = await self.get_json(path)
        if not isinstance(payload, dict):
            raise MalformedPayload(f"Detail record for {entity_id} is not an object")
        return DetailRecord(entity_id=str(entity_id), data=payload)

    async def export(self, snapshot: FilterSnapshot) -> Any:
        return await self.get_json(EXPORT_PATH, snapshot.to_query_params())
