"""
Client for the panel admin API.

Provides validated access to the roster, usage-reset and quota-update endpoints.
"""

from .panel_client import PanelClient

__all__ = ["PanelClient"]
