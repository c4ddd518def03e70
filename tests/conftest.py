"""
Pytest configuration for tracefold tests.

Every test starts with an empty frame descriptor cache, the stock default
configuration and the stock module classifier.
"""

from collections.abc import Iterator

import pytest

from tracefold.cache import get_frame_cache
from tracefold.config import RenderConfig, get_default_config, set_default_config
from tracefold.modules import set_module_classifier


@pytest.fixture(autouse=True)
def fresh_render_state() -> Iterator[None]:
    previous = get_default_config()
    get_frame_cache().clear()
    set_default_config(RenderConfig())
    set_module_classifier(None)
    yield
    set_default_config(previous)
    set_module_classifier(None)
    get_frame_cache().clear()
