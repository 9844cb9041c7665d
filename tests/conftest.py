"""Shared fixtures for the store tests."""

import pytest

from store import Connection


@pytest.fixture
def connection():
    """Connected connection for the user "alice"."""
    return Connection({
        'connection_id': 'irc-libera',
        'url': 'irc://irc.libera.chat:6697?nick=alice&tls=1',
        'state': 'connected',
    })


@pytest.fixture
def collected():
    """List that subscribers can append to."""
    return []
