# tests/conftest.py
"""
Shared pytest configuration for the resolver tests.
"""

from __future__ import annotations

import logging

import pytest

from sharescan.cache.presigned_url_cache import PresignedUrlCache
from sharescan.data_classes import TableReference
from sharing_fakes import FakeSharingClient


@pytest.fixture(autouse=True, scope="session")
def _suppress_test_log_noise():
    """Untranslatable predicates and failed refreshes log warnings on purpose."""
    logging.getLogger("sharescan").setLevel(logging.CRITICAL)
    yield
    logging.getLogger("sharescan").setLevel(logging.NOTSET)


@pytest.fixture()
def client():
    return FakeSharingClient()


@pytest.fixture()
def table():
    return TableReference("share1", "default", "table1")


@pytest.fixture()
def cache():
    c = PresignedUrlCache()
    yield c
    c.shutdown()
