"""
Unit tests for ServiceContainer wiring that need no database.
"""

import pytest

from missionflow.core.logging.logger import get_logger
from missionflow.core.services.container import ServiceContainer


@pytest.mark.unit
class TestServiceContainer:
    @pytest.mark.parametrize("name", ["store", "progression", "cache", "audit"])
    def test_services_require_initialize(self, config_manager, event_bus, name):
        container = ServiceContainer(config_manager, event_bus, get_logger("tests.container"))

        assert container.is_initialized is False
        with pytest.raises(RuntimeError):
            getattr(container, name)
