"""
Shared fixtures for panel-backed tests.
"""

import pytest

from vps_carryover.client.panel_client import PanelClient
from vps_carryover.demo.fake_panel import FakePanel

API_BASE = "https://panel.test:4085/index.php?adminapikey=key&adminapipass=pass"


@pytest.fixture
def panel():
    """A fake panel with default truncation at 50 entries."""
    return FakePanel()


@pytest.fixture
def client(panel):
    """A client wired to the fake panel."""
    panel_client = PanelClient(API_BASE, transport=panel.transport())
    yield panel_client
    panel_client.close()
