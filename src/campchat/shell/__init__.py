"""Presentation shell: viewport, composer, artifacts, rendering and the widget view model."""
