from django.urls import include, path

urlpatterns = [
    path("api/", include("exams.urls")),
    path("api/", include("results.urls")),
]
