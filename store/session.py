"""Session: the store that owns every connection of one user."""

import logging
from typing import Any, Callable, Dict, Optional

from .connection import Connection
from .reactive import ReactiveEntity
from .sorted_map import SortedMap

logger = logging.getLogger(__name__)


def sort_connections(a: Connection, b: Connection) -> int:
    key_a, key_b = (a.name.lower(), a.connection_id), (b.name.lower(), b.connection_id)
    return (key_a > key_b) - (key_a < key_b)


class Session(ReactiveEntity):
    """
    Owns the connections and routes protocol events to them.

    A session is created when the client is set up and torn down with it;
    there is no process-wide instance.
    """

    def __init__(self, api=None, sender: Optional[Callable[[Dict[str, Any]], Any]] = None):
        super().__init__()
        self.prop('ro', 'connections', SortedMap(sorter=sort_connections))
        self.api = api
        self.sender = sender

    def ensure_connection(self, params: Dict[str, Any]) -> Connection:
        """Get or create the connection named by params["connection_id"]."""
        connection = self.connections.get(params['connection_id'])
        if connection is not None:
            return connection.update(params)

        connection = Connection(params, api=self.api, sender=self.sender)
        connection.on('message', lambda msg, source: self.emit('message', msg, source))
        connection.on('update', self._connection_updated)
        self.connections.set(connection.connection_id, connection)
        logger.info("Added connection %s", connection.connection_id)
        self.update(force=True)
        return connection

    def find_connection(self, params: Dict[str, Any]) -> Optional[Connection]:
        connection_id = params.get('connection_id')
        return self.connections.get(connection_id) if connection_id else None

    def remove_connection(self, params: Dict[str, Any]) -> 'Session':
        """Remove a connection together with all of its dialogs."""
        connection = self.find_connection(params)
        if connection is not None:
            self.connections.delete(connection.connection_id)
            connection.teardown()
            logger.info("Removed connection %s", connection.connection_id)
        return self.update(force=True)

    def handle_event(self, event: Dict[str, Any]) -> bool:
        """
        Route a protocol event to its connection.

        Returns:
            True if the connection stopped further propagation
        """
        connection = self.find_connection(event)
        if connection is None:
            logger.debug("Ignoring event for unknown connection %r", event.get('connection_id'))
            return False
        return connection.handle_event(event)

    def _connection_updated(self, connection: Connection):
        self.connections.set(connection.connection_id, connection)
        self.update(force=True)

    def teardown(self):
        for connection in self.connections.to_array():
            connection.teardown()
        self.connections.clear()
        self.off()
