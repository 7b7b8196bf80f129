"""
URL configuration for projective_tests project.

All routes live in the drawings app and are mounted at the root, matching the
paths the upload form posts to (/predict, /api/..., /trainData).
"""
from django.urls import include, path

urlpatterns = [
    path("", include("drawings.urls")),
]
