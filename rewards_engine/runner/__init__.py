"""Flows and run reporting."""
