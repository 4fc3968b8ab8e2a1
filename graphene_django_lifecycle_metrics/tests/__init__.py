"""Unit tests for graphene_django_lifecycle_metrics."""
