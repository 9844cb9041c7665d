"""Tests for translating IRC traffic into connection events."""

import pytest

from bridge import IrcBridge
from bridge.irc_bridge import is_channel, split_prefix


class FakeIRC:
    """Records handler registrations and outgoing lines."""

    def __init__(self):
        self.handlers = {}
        self.quoted = []
        self.sent = []

    def Handler(self, *commands, colon=True):
        def decorator(func):
            for command in commands:
                self.handlers[command] = func
            return func
        return decorator

    CmdHandler = Handler

    def quote(self, *parts):
        self.quoted.append(' '.join(parts))

    def msg(self, target, *text):
        self.sent.append((target, ' '.join(text)))


@pytest.fixture
def bridge(connection):
    bridge = IrcBridge(connection, dialogs=['#convos'])
    bridge.irc = FakeIRC()
    bridge.register_handlers(bridge.irc)
    return bridge


HOST = ('bob', 'bob', 'example.com')
ME = ('alice', 'alice', 'example.org')


class TestHelpers:
    def test_is_channel(self):
        assert is_channel('#convos')
        assert is_channel('&local')
        assert not is_channel('bob')
        assert not is_channel('')

    def test_split_prefix(self):
        assert split_prefix('@+bob') == ('ov', 'bob')
        assert split_prefix('carol') == ('', 'carol')


class TestIncoming:
    def test_handlers_are_registered(self, bridge):
        for command in ('001', 'JOIN', 'PRIVMSG', 'NOTICE', '353', '366', '318', '475', 'ERROR'):
            assert command in bridge.irc.handlers

    def test_join_and_names(self, bridge, connection):
        bridge.on_join(bridge.irc, ME, ['#convos'])
        bridge.on_names(bridge.irc, ('server', 'server', 'server'), ['alice', '=', '#convos', '@alice +bob carol'])
        bridge.on_names_end(bridge.irc, ('server', 'server', 'server'), ['alice', '#convos', 'End of /NAMES list.'])

        dialog = connection.dialogs.get('#convos')
        assert dialog.connection_id == 'irc-libera'
        assert [(p.nick, p.me, p.mode) for p in dialog.participants()] == [
            ('alice', True, 'o'),
            ('bob', False, 'v'),
            ('carol', False, ''),
        ]

    def test_channel_and_private_messages(self, bridge, connection):
        bridge.on_message(bridge.irc, 'PRIVMSG', HOST, ['#convos', 'hello'])
        bridge.on_message(bridge.irc, 'PRIVMSG', HOST, ['alice', '\x01ACTION waves\x01'])
        bridge.on_message(bridge.irc, 'NOTICE', ('irc.libera.chat', 'irc.libera.chat', 'irc.libera.chat'), ['alice', 'MOTD'])

        assert connection.dialogs.get('#convos').messages[-1].text == 'hello'
        action = connection.dialogs.get('bob').messages[-1]
        assert (action.text, action.type) == ('waves', 'action')
        assert connection.messages[-1].text == 'MOTD'

    def test_part_and_kick(self, bridge, connection):
        bridge.on_join(bridge.irc, ME, ['#convos'])
        bridge.on_join(bridge.irc, HOST, ['#convos'])
        bridge.on_kick(bridge.irc, ('op', 'op', 'example.com'), ['#convos', 'bob', 'Spam'])
        assert connection.dialogs.get('#convos').messages[-1].text == 'bob parted: Spam'

        bridge.on_part(bridge.irc, ME, ['#convos'])
        assert '#convos' not in connection.dialogs

    def test_quit_and_nick(self, bridge, connection):
        bridge.on_join(bridge.irc, ME, ['#convos'])
        bridge.on_join(bridge.irc, HOST, ['#convos'])
        bridge.on_nick(bridge.irc, ME, ['alicia'])
        bridge.on_quit(bridge.irc, HOST, ['Ping timeout'])

        assert connection.nick == 'alicia'
        assert connection.dialogs.get('#convos').roster.nicks() == ['alicia']

    def test_topic(self, bridge, connection):
        bridge.on_topic_reply(bridge.irc, '332', ('s', 's', 's'), ['alice', '#convos', 'Be nice'])
        assert connection.dialogs.get('#convos').topic == 'Be nice'
        bridge.on_topic(bridge.irc, HOST, ['#convos', ''])
        assert connection.dialogs.get('#convos').messages[-1].text == 'No topic is set.'

    def test_mode(self, bridge, connection):
        bridge.on_join(bridge.irc, ME, ['#convos'])
        bridge.on_join(bridge.irc, HOST, ['#convos'])
        bridge.on_mode(bridge.irc, ME, ['#convos', '+o', 'bob'])
        bridge.on_mode(bridge.irc, ME, ['alice', '+i'])
        assert connection.dialogs.get('#convos').participant('bob').mode == 'o'

    def test_whois(self, bridge, connection):
        server = ('s', 's', 's')
        bridge.on_whois_reply(bridge.irc, '311', server, ['alice', 'bob', 'bobby', 'example.com', '*', 'Bob'])
        bridge.on_whois_reply(bridge.irc, '317', server, ['alice', 'bob', '42', 'seconds idle'])
        bridge.on_whois_reply(bridge.irc, '319', server, ['alice', 'bob', '@#ops #convos'])
        bridge.on_whois_end(bridge.irc, server, ['alice', 'bob', 'End of /WHOIS list.'])

        assert connection.messages[-1].text == 'bob (bobby@example.com) has been idle for 42 in #convos, @#ops.'

    def test_list(self, bridge, connection):
        bridge.send({'message': '/list'})
        bridge.on_list_reply(bridge.irc, ('s', 's', 's'), ['alice', '#convos', '12', 'Chat'])
        bridge.on_list_reply(bridge.irc, ('s', 's', 's'), ['alice', '#perl', '40', ''])
        bridge.on_list_end(bridge.irc, ('s', 's', 's'), ['alice', 'End of /LIST'])

        assert bridge.irc.quoted == ['LIST']
        assert connection.messages[-1].text == 'Found 2 of 2 dialogs from all.'

    def test_list_progress_and_restart(self, bridge, connection, monkeypatch):
        monkeypatch.setattr('bridge.irc_bridge.LIST_PROGRESS_EVERY', 2)
        server = ('s', 's', 's')
        bridge.send({'message': '/list'})
        bridge.on_list_reply(bridge.irc, server, ['alice', '#a', '1', ''])
        bridge.on_list_reply(bridge.irc, server, ['alice', '#b', '1', ''])
        assert connection.messages[-1].text == 'Found 2 of 2 dialogs from all, but dialogs are still loading.'

        # A new /list starts from an empty result with its own filter
        bridge.send({'message': '/list #c'})
        bridge.on_list_reply(bridge.irc, server, ['alice', '#c', '3', ''])
        bridge.on_list_end(bridge.irc, server, ['alice', 'End of /LIST'])

        assert bridge.irc.quoted == ['LIST', 'LIST #c']
        assert connection.messages[-1].text == 'Found 1 of 1 dialogs from #c.'
        assert not bridge._list_lock.locked()

    def test_bad_channel_key(self, bridge, connection):
        bridge.on_join_error(bridge.irc, '475', ('s', 's', 's'), ['alice', '#secret', 'Cannot join channel (+k)'])
        dialog = connection.dialogs.get('#secret')
        assert dialog.frozen == 'Password protected.'
        assert dialog.messages[-1].text == 'Invalid password.'

    def test_no_such_nick(self, bridge, connection):
        bridge.on_error_reply(bridge.irc, '401', ('s', 's', 's'), ['alice', 'nobody', 'No such nick/channel'])
        assert connection.errors == 1
        assert connection.messages[-1].text == 'No such nick/channel'

    def test_welcome_runs_connect_commands(self, bridge, connection):
        connection.update(state='connecting', on_connect_commands='/nick alicia\n\n/join #perl')
        bridge.on_welcome(bridge.irc, ('s', 's', 's'), ['alice', 'Welcome'])
        assert connection.state == 'connected'
        assert bridge.irc.quoted == ['NICK alicia', 'JOIN #perl']

    def test_server_error_disconnects(self, bridge, connection):
        bridge.on_server_error(bridge.irc, ('s', 's', 's'), ['Closing link'])
        assert connection.frozen == 'Disconnected.'


class TestOutgoing:
    def test_connection_sends_through_bridge(self, bridge, connection):
        connection.add_dialog('#perl')
        connection.add_dialog('bob')
        assert bridge.irc.quoted == ['JOIN #perl']
        assert connection.dialogs.get('bob').is_private

    def test_text_is_echoed(self, bridge, connection):
        connection.send('hello', dialog_id='#convos')
        assert bridge.irc.sent == [('#convos', 'hello')]
        msg = connection.dialogs.get('#convos').messages[-1]
        assert (msg.from_, msg.text) == ('alice', 'hello')
        assert connection.dialogs.get('#convos').unread == 0

    def test_me_action(self, bridge):
        bridge.send({'message': '/me waves', 'dialog_id': '#convos'})
        assert bridge.irc.sent == [('#convos', '\x01ACTION waves\x01')]

    @pytest.mark.parametrize('message, quoted', [
        ('/topic New topic', ['TOPIC #convos :New topic']),
        ('/topic', ['TOPIC #convos']),
        ('/whois bob', ['WHOIS bob']),
        ('/part', ['PART #convos']),
        ('/quote PRIVMSG NickServ :identify', ['PRIVMSG NickServ :identify']),
        ('/away gone', ['AWAY gone']),
    ])
    def test_commands(self, bridge, message, quoted):
        bridge.send({'message': message, 'dialog_id': '#convos'})
        assert bridge.irc.quoted == quoted

    def test_msg(self, bridge):
        bridge.send({'message': '/msg bob hi there'})
        assert bridge.irc.sent == [('bob', 'hi there')]

    def test_close_private_dialog(self, bridge, connection):
        connection.ensure_dialog({'dialog_id': 'bob'})
        bridge.send({'message': '/close', 'dialog_id': 'bob'})
        assert 'bob' not in connection.dialogs
        assert bridge.irc.quoted == []

    def test_not_connected(self, bridge, connection):
        bridge.irc = None
        bridge.send({'message': 'hello'})
        assert connection.messages[-1].text == 'Not connected.'
        assert connection.errors == 1

    def test_empty_message_is_ignored(self, bridge):
        bridge.send({'message': '   '})
        assert bridge.irc.quoted == []
        assert bridge.irc.sent == []
