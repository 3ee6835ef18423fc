"""Client-side CRM workspace: entity cache, permissions, visibility and workflows."""

__version__ = "0.1.0"
