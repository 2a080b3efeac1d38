from __future__ import annotations

import pytest

from pwshpipe.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)
