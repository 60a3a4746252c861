from __future__ import annotations

import asyncio
import logging
import math
import threading
from datetime import date
from functools import lru_cache
from typing import Any

from django.conf import settings
from rest_framework.exceptions import ValidationError

from .cache import OverlayCache, OverlayCacheKey
from .cancellation import CancellationToken, StaleResultDiscarded
from .geometry import bounding_box, enforce_area_limit, normalize
from .layers import MountedOverlay, OverlayLayerManager
from .metrics import overlay_stale_discarded_total
from .palette import get_stops
from .resolver import OverlayRequest, OverlayResult, SourceResolver
from .sources.base import FieldQuery, TimeWindow
from .sources.registry import get_sources

logger = logging.getLogger(__name__)

DEFAULT_PALETTE = getattr(settings, "OVERLAY_DEFAULT_PALETTE", "contrast")
DEFAULT_WINDOW_DAYS = int(getattr(settings, "OVERLAY_DEFAULT_WINDOW_DAYS", 30))
MAX_WINDOW_DAYS = int(getattr(settings, "OVERLAY_MAX_WINDOW_DAYS", 370))


def build_window(
    *,
    days: int | None = None,
    start: date | None = None,
    end: date | None = None,
    today: date | None = None,
) -> TimeWindow:
    if start is not None or end is not None:
        if start is None or end is None:
            raise ValidationError("start and end must be provided together.")
        if start > end:
            raise ValidationError("start must be on or before end.")
        window = TimeWindow(start=start, end=end)
    else:
        span = DEFAULT_WINDOW_DAYS if days is None else int(days)
        if span < 1:
            raise ValidationError("days must be at least 1.")
        window = TimeWindow.last_days(span, today=today)

    if window.days > MAX_WINDOW_DAYS:
        raise ValidationError(
            "Requested window exceeds OVERLAY_MAX_WINDOW_DAYS."
        )
    return window


def build_request(
    field_id: str,
    boundary: Any,
    *,
    days: int | None = None,
    start: date | None = None,
    end: date | None = None,
    palette_key: str | None = None,
    index_value: float | None = None,
    today: date | None = None,
) -> OverlayRequest:
    """Validate caller input into an `OverlayRequest`.

    Raises `GeometryError` for unusable boundaries (including fields over
    the area limit), `UnknownPaletteError` for unknown palettes and
    `ValidationError` for bad windows or index values.
    """

    polygon = normalize(boundary)
    bbox = bounding_box(polygon)
    enforce_area_limit(bbox)

    palette = palette_key or DEFAULT_PALETTE
    get_stops(palette)

    if index_value is not None:
        index_value = float(index_value)
        if not math.isfinite(index_value) or not -1.0 <= index_value <= 1.0:
            raise ValidationError("index_value must be within [-1, 1].")

    return OverlayRequest(
        field=FieldQuery(
            field_id=str(field_id),
            polygon=polygon,
            bbox=bbox,
            palette_key=palette,
        ),
        window=build_window(days=days, start=start, end=end, today=today),
        index_value=index_value,
    )


def cache_key_for(request: OverlayRequest) -> OverlayCacheKey:
    return OverlayCacheKey(
        field_id=request.field_id,
        window_hash=request.window.window_hash(),
        palette_key=request.palette_key,
    )


class OverlayService:
    """Cache lookup, provider cascade and optional map mounting per field.

    Only the newest request for a field may store or mount its result:
    starting a request cancels the token and the task of the previous one.
    """

    def __init__(
        self,
        resolver: SourceResolver,
        cache: OverlayCache,
        layer_manager: OverlayLayerManager | None = None,
    ) -> None:
        self.resolver = resolver
        self.cache = cache
        self.layer_manager = layer_manager
        self._tasks: dict[str, asyncio.Task[OverlayResult]] = {}
        self._tasks_lock = threading.Lock()

    async def resolve(self, request: OverlayRequest) -> OverlayResult | None:
        """Return the overlay for `request`, or None if it was superseded."""

        result, token = await self._run(request)
        self.cache.release(token)
        return result

    async def show(
        self,
        slot_id: str,
        request: OverlayRequest,
        *,
        fit_viewport: bool = True,
    ) -> MountedOverlay | None:
        if self.layer_manager is None:
            raise RuntimeError("OverlayService has no layer manager to mount on")
        result, token = await self._run(request)
        try:
            if result is None:
                return None
            return self.layer_manager.apply(
                slot_id, result, fit_viewport=fit_viewport, token=token
            )
        finally:
            self.cache.release(token)

    def refresh(self, field_id: str) -> bool:
        """Forget the cached overlay of `field_id`."""

        return self.cache.invalidate(str(field_id))

    async def _run(
        self, request: OverlayRequest
    ) -> tuple[OverlayResult | None, CancellationToken]:
        token = self.cache.issue_token(request.field_id)
        try:
            return await self._run_with(request, token), token
        except BaseException:
            self.cache.release(token)
            raise

    async def _run_with(
        self, request: OverlayRequest, token: CancellationToken
    ) -> OverlayResult | None:
        field_id = request.field_id
        self._cancel_in_flight(field_id)

        key = cache_key_for(request)
        entry = self.cache.get(key)
        if entry is not None:
            return entry.result

        task = asyncio.ensure_future(self.resolver.resolve(request, token))
        with self._tasks_lock:
            self._tasks[field_id] = task
        try:
            result = await task
        except StaleResultDiscarded:
            return self._discarded(token)
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            return self._discarded(token)
        finally:
            with self._tasks_lock:
                if self._tasks.get(field_id) is task:
                    del self._tasks[field_id]

        if not self.cache.put(key, result, token):
            return None
        return result

    def _cancel_in_flight(self, field_id: str) -> None:
        with self._tasks_lock:
            previous = self._tasks.pop(field_id, None)
        if previous is None or previous.done():
            return
        loop = previous.get_loop()
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(previous.cancel)

    def _discarded(self, token: CancellationToken) -> None:
        overlay_stale_discarded_total.labels(stage="resolve").inc()
        logger.info(
            "overlays.service superseded request field=%s sequence=%s",
            token.field_id,
            token.sequence,
        )
        return None


@lru_cache(maxsize=1)
def get_overlay_service() -> OverlayService:
    """Process-wide service over the configured sources and cache."""

    return OverlayService(
        resolver=SourceResolver(get_sources()),
        cache=OverlayCache(),
    )
