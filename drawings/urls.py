from django.urls import path

from . import views

urlpatterns = [
    path("predict", views.PredictView.as_view(), name="predict"),
    path("api/test-results", views.TestResultsView.as_view(), name="test-results"),
    path("api/train-data", views.TrainDataView.as_view(), name="train-data"),
    # route used by the react upload form
    path("api/uploadTrainData", views.TrainDataView.as_view(), name="upload-train-data"),
    path("trainData", views.TrainView.as_view(), name="train"),
    path("api/train-jobs", views.TrainingJobListView.as_view(), name="train-jobs"),
    path("api/train-jobs/<str:job_id>", views.TrainingJobDetailView.as_view(), name="train-job-detail"),
]
