"""Durable engine state."""
