"""Tests for Session connection ownership and event routing."""

from store import Session


def make_session():
    session = Session()
    session.ensure_connection({'connection_id': 'irc-oftc', 'url': 'irc://irc.oftc.net?nick=alice', 'state': 'connected'})
    session.ensure_connection({'connection_id': 'irc-libera', 'url': 'irc://irc.libera.chat?nick=alice', 'state': 'connected'})
    return session


class TestSession:
    def test_connections_are_sorted_by_name(self):
        session = make_session()
        assert session.connections.keys() == ['irc-libera', 'irc-oftc']

    def test_renamed_connection_is_resorted(self):
        session = make_session()
        session.ensure_connection({'connection_id': 'irc-libera', 'name': 'Zeta'})
        assert session.connections.keys() == ['irc-oftc', 'irc-libera']

    def test_ensure_connection_is_idempotent(self):
        session = make_session()
        connection = session.ensure_connection({'connection_id': 'irc-libera', 'state': 'disconnected'})
        assert connection is session.find_connection({'connection_id': 'irc-libera'})
        assert connection.state == 'disconnected'
        assert len(session.connections) == 2

    def test_events_are_routed_by_connection_id(self):
        session = make_session()
        session.handle_event({'connection_id': 'irc-libera', 'type': 'join', 'dialog_id': '#convos', 'nick': 'alice'})
        assert '#convos' in session.find_connection({'connection_id': 'irc-libera'}).dialogs
        assert len(session.find_connection({'connection_id': 'irc-oftc'}).dialogs) == 0

    def test_unknown_connection_is_ignored(self):
        session = make_session()
        assert session.handle_event({'connection_id': 'nope', 'type': 'join', 'dialog_id': '#x'}) is False
        assert session.handle_event({'type': 'join'}) is False

    def test_stop_flag_is_returned(self):
        session = make_session()
        assert session.handle_event({'connection_id': 'irc-libera', 'type': 'quit', 'nick': 'bob'}) is True

    def test_messages_and_updates_bubble_up(self, collected):
        session = make_session()
        session.on('message', lambda msg, source: collected.append((msg.text, source.dialog_id)))
        updates = []
        session.on('update', updates.append)

        session.handle_event({'connection_id': 'irc-libera', 'type': 'join', 'dialog_id': '#convos', 'nick': 'bob'})
        assert collected == [('bob joined.', '#convos')]
        assert updates

    def test_remove_connection(self, collected):
        session = make_session()
        connection = session.find_connection({'connection_id': 'irc-libera'})
        connection.handle_event({'type': 'join', 'dialog_id': '#convos', 'nick': 'alice'})

        session.remove_connection({'connection_id': 'irc-libera'})
        assert session.connections.keys() == ['irc-oftc']
        assert len(connection.dialogs) == 0

        session.on('message', lambda *args: collected.append(args))
        connection.add_message({'message': 'late'})
        assert collected == []

    def test_teardown(self):
        session = make_session()
        session.teardown()
        assert len(session.connections) == 0
