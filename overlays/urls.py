from __future__ import annotations

from django.urls import path

from .views import OverlayRefreshView, OverlayView, PaletteListView

urlpatterns = [
    path("overlays/", OverlayView.as_view(), name="overlay-resolve"),
    path(
        "overlays/palettes/",
        PaletteListView.as_view(),
        name="overlay-palettes",
    ),
    path(
        "overlays/<str:field_id>/refresh/",
        OverlayRefreshView.as_view(),
        name="overlay-refresh",
    ),
]
