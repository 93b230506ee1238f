"""
Window Manager Adapters

This package contains adapters for the supported tiling window managers.
Each adapter implements some subset of the spaces capability interfaces
(query, focus-aware, switchable, event-based) so the synchronizer can use it
through AnySpacesProvider.
"""
