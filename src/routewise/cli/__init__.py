"""Operator CLI for Routewise."""
