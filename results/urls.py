from django.urls import path

from .views import ResultDetailView, ResultListView, ResultVisibilityView

urlpatterns = [
    path("results", ResultListView.as_view(), name="result-list"),
    path("results/<int:result_id>", ResultDetailView.as_view(), name="result-detail"),
    path("results/<int:result_id>/visibility", ResultVisibilityView.as_view(), name="result-visibility"),
]
