"""Workspace files — store, diff engine, apply/undo and editor sessions."""
