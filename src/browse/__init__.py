"""Windowed account access for virtualized lists."""
