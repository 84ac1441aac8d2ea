"""Shared fixtures: a catalog of fake plugins and a registry over it."""

from __future__ import annotations

import pytest
from fakes import make_catalog

from switchboard.core.registry import InstanceRegistry


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def registry(catalog):
    return InstanceRegistry(catalog)
