"""Operator tooling for the clinical workflow engine."""
