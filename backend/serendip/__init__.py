"""Serendip feed core: source crawler and discovery engine."""
