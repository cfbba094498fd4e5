from django.urls import include, path

urlpatterns = [
    path("", include("catalogo.urls")),
]
