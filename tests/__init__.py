"""Test package for machine_advisor."""
