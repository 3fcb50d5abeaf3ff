"""Tile resolution and deduplicated WMS imagery loading for a polar stereographic map."""
