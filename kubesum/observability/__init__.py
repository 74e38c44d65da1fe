"""Logging and metrics for kubesum."""
