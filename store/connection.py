"""Connection: reduces protocol events into the connection and dialog state."""

import logging
from typing import Any, Callable, Dict, Optional

from .conn_url import ConnURL
from .conversation import Conversation
from .dialog import Dialog
from .models import Message, Participant
from .reactive import ReactiveEntity
from .roster import Roster
from .sorted_map import SortedMap
from .util import extract_error_message, is_private_name

logger = logging.getLogger(__name__)

# Event type -> handler. "topic" and "sent_topic" are the same reply.
EVENT_HANDLERS = {
    'connection': 'ws_event_connection',
    'state': 'ws_event_connection',
    'frozen': 'ws_event_frozen',
    'message': 'ws_event_message',
    'nick_change': 'ws_event_nick_change',
    'error': 'ws_event_error',
    'join': 'ws_event_join',
    'part': 'ws_event_part',
    'quit': 'ws_event_quit',
    'sent_join': 'ws_event_sent_join',
    'sent_list': 'ws_event_sent_list',
    'sent_query': 'ws_event_sent_query',
    'sent_whois': 'ws_event_sent_whois',
    'sent_topic': 'ws_event_topic',
    'topic': 'ws_event_topic',
}

# Event types that a named dialog handles before the connection sees them.
DIALOG_EVENT_HANDLERS = {
    'part': 'ws_event_part',
    'quit': 'ws_event_quit',
    'mode': 'ws_event_mode',
    'participants': 'ws_event_participants',
}

DEFAULT_LIST_ARGS = 'all'


def sort_dialogs(a: Dialog, b: Dialog) -> int:
    """Channels before private dialogs, then by name, then by id."""
    key_a, key_b = (a.is_private, a.name, a.dialog_id), (b.is_private, b.name, b.dialog_id)
    return (key_a > key_b) - (key_a < key_b)


def frozen_reason(state: str) -> str:
    """Why a connection in the given state is unusable, or '' if it is usable."""
    if state == 'connected':
        return ''
    if state == 'disconnected':
        return 'Disconnected.'
    if state == 'unreachable':
        return 'Unreachable.'
    return 'Connecting...'


def event_kind(event: Dict[str, Any]) -> str:
    """
    Find the handler key for an event.

    The kind is read from "event", falling back to "type". Message events
    use "event" so that "type" can hold the message type.

    {"type": "sent", "message": "/whois batgirl"} -> "sent_whois"
    """
    kind = event.get('event') or event.get('type') or ''
    if kind == 'sent':
        command = (event.get('message') or '').split(None, 1)
        if command and command[0].startswith('/'):
            return 'sent_' + command[0][1:].lower()
    return kind


class Connection(Conversation, ReactiveEntity):
    """
    A chat network connection and the dialogs that belong to it.

    The connection is the only writer of its dialog collection. Protocol
    events are fed to handle_event() one at a time; handlers never raise
    for unexpected input, they degrade to messages in the log instead.
    """

    last_read_operation_id = 'setConnectionLastRead'
    messages_operation_id = 'connectionMessages'

    def __init__(
        self,
        params: Optional[Dict[str, Any]] = None,
        api=None,
        sender: Optional[Callable[[Dict[str, Any]], Any]] = None,
        **fields
    ):
        """
        Initialize connection.

        Args:
            params: Connection fields ("connection_id", "url", "nick", "state", ...)
            api: Optional Api passed on to every dialog
            sender: Callable that delivers outgoing commands to the transport
            **fields: More connection fields
        """
        super().__init__()
        params = {**(params or {}), **fields}
        url = params.get('url') or ''
        url = ConnURL(url) if isinstance(url, str) else url

        self.prop('ro', 'connection_id', params.get('connection_id') or '')
        self.prop('ro', 'dialog_id', '')
        self.prop('ro', 'is_private', False)
        self.prop('ro', 'dialogs', SortedMap(sorter=sort_dialogs))
        self.prop('ro', 'nick', params.get('nick') or url.search_params.get('nick') or '')
        self.prop('rw', 'name', params.get('name') or url.host or self.connection_id)
        self.prop('rw', 'url', url)
        self.prop('rw', 'state', params.get('state') or 'queued')
        self.prop('rw', 'wanted_state', params.get('wanted_state') or 'connected')
        self.prop('rw', 'on_connect_commands', params.get('on_connect_commands') or '')
        self.prop('rw', 'errors', params.get('errors') or 0)
        self.prop('rw', 'unread', params.get('unread') or 0)
        self.prop('rw', 'last_read', params.get('last_read'))

        self.api = api
        self.sender = sender
        self.roster = Roster()
        self._messages = []
        self._add_operations()

        if self.nick:
            self.participants([{'nick': self.nick, 'me': True}])

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id}>"

    def is_(self, status: str) -> bool:
        return self.state == status or super().is_(status)

    def handle_event(self, event: Dict[str, Any]) -> bool:
        """
        Reduce one protocol event.

        Dialog-scoped events are delivered to the named dialog first.
        Events of an unknown type are ignored.

        Args:
            event: Protocol event with a "type" discriminator

        Returns:
            True if the handler stopped further propagation of the event
        """
        kind = event_kind(event)
        handled = False

        dialog_handler = DIALOG_EVENT_HANDLERS.get(kind)
        if dialog_handler and event.get('dialog_id'):
            dialog = self.find_dialog(event)
            if dialog is not None:
                getattr(dialog, dialog_handler)(event)
                handled = True

        handler = EVENT_HANDLERS.get(kind)
        if handler is None:
            if not handled:
                logger.debug("Ignoring %r event for %r", kind, self)
            return False

        return bool(getattr(self, handler)(event))

    def add_dialog(self, dialog_id: str) -> bool:
        """Ask the server to join a channel or open a private dialog."""
        command = '/query' if is_private_name(dialog_id) else '/join'
        return self.send(f"{command} {dialog_id}")

    def send(self, message: str, dialog_id: Optional[str] = None) -> bool:
        """
        Hand an outgoing message or command to the transport.

        Returns:
            False if there is no transport to send through
        """
        if self.sender is None:
            logger.warning("Cannot send %r on %r: no transport", message, self)
            target = self.find_dialog({'dialog_id': dialog_id}) or self
            target.add_message({'message': 'Not connected.', 'vars': [], 'type': 'error'})
            return False

        self.sender({
            'method': 'send',
            'connection_id': self.connection_id,
            'dialog_id': dialog_id or '',
            'message': message
        })
        return True

    def ensure_dialog(self, params: Dict[str, Any]) -> Dialog:
        """
        Get the dialog named by params["dialog_id"], creating it if needed.

        An existing dialog gets the params merged in with update().
        """
        dialog = self.dialogs.get(params['dialog_id'])
        if dialog is not None:
            dialog.update(params)
            if 'frozen' in params:
                dialog._set_frozen(params['frozen'])
            return dialog

        dialog = Dialog({**params, 'connection_id': self.connection_id}, api=self.api)
        dialog.on('message', lambda msg, source: self.emit('message', msg, source))
        dialog.on('update', self._dialog_updated)
        self._add_default_participants(dialog)
        self.dialogs.set(dialog.dialog_id, dialog)
        logger.info("Added dialog %s to %s", dialog.dialog_id, self.connection_id)
        self.update(force=True)
        return dialog

    def find_dialog(self, params: Dict[str, Any]) -> Optional[Dialog]:
        dialog_id = params.get('dialog_id')
        return self.dialogs.get(dialog_id) if dialog_id else None

    def remove_dialog(self, params: Dict[str, Any]) -> 'Connection':
        dialog = self.find_dialog(params)
        if dialog is not None:
            self.dialogs.delete(dialog.dialog_id)
            dialog.off()
            logger.info("Removed dialog %s from %s", dialog.dialog_id, self.connection_id)
        return self.update(force=True)

    def teardown(self):
        """Destroy every dialog and drop all subscriptions."""
        for dialog in self.dialogs.to_array():
            dialog.off()
        self.dialogs.clear()
        self.off()

    def ws_event_connection(self, params: Dict[str, Any]):
        state = params.get('state') or self.state
        logger.info("Connection %s changed state %s -> %s", self.connection_id, self.state, state)
        self.update(state=state)
        if params.get('message'):
            self.add_message({'message': 'Connection state changed to %1: %2', 'vars': [state, params['message']]})
        else:
            self.add_message({'message': 'Connection state changed to %1.', 'vars': [state]})

    def ws_event_frozen(self, params: Dict[str, Any]):
        frozen = params.get('frozen') or ''
        if not params.get('dialog_id'):
            if frozen:
                self.add_message({'message': frozen, 'vars': []})
            return

        existing = self.find_dialog(params)
        was_frozen = existing.frozen if existing is not None else ''
        dialog = self.ensure_dialog({**params, 'frozen': frozen})
        if self.nick:
            dialog.participants([{'nick': self.nick, 'me': True}])
        if frozen and frozen != was_frozen:
            (existing or self).add_message({'message': frozen, 'vars': []})
        if was_frozen and not frozen:
            existing.add_message({'message': 'Connected.', 'vars': []})

    def ws_event_message(self, params: Dict[str, Any]) -> Message:
        if params.get('type') in (None, 'message'):
            params = {**params, 'type': 'private'}
        if params.get('dialog_id'):
            return self.ensure_dialog(params).add_message(params)
        return self.add_message(params)

    def ws_event_nick_change(self, params: Dict[str, Any]):
        nick_change = {
            'old_nick': params.get('old_nick') or self.nick,
            'new_nick': params.get('new_nick') or params.get('nick'),
            'type': params.get('type'),
        }
        if not nick_change['new_nick']:
            return

        if self._is_me(nick_change['old_nick']):
            self._set_prop('nick', nick_change['new_nick'])
            logger.info("Nick on %s changed to %s", self.connection_id, self.nick)
        super().ws_event_nick_change(nick_change)
        for dialog in self.dialogs.to_array():
            dialog.ws_event_nick_change(nick_change)
        self.update(force=True)

    def ws_event_error(self, params: Dict[str, Any]):
        if params.get('dialog_id') and params.get('frozen'):
            # "errors" in the event is the error list, not the dialog counter
            target = self.ensure_dialog({'dialog_id': params['dialog_id'], 'frozen': params['frozen']})
        else:
            target = self.find_dialog(params) or self
        target.update(errors=(target.errors or 0) + 1)

        message = extract_error_message(params) or params.get('frozen') or 'Unknown error from %1.'
        if message == 'Password protected.':
            message = 'Invalid password.'
        target.add_message({
            'message': message,
            'type': 'error',
            'sent': dict(params),
            'vars': params.get('command') or [params.get('message')],
        })

    def ws_event_join(self, params: Dict[str, Any]):
        dialog = self.ensure_dialog(params)
        nick = params.get('nick') or self.nick
        if not self._is_me(nick):
            dialog.add_message({'message': '%1 joined.', 'vars': [nick]})
        dialog.participants([{'nick': nick}])

    def ws_event_part(self, params: Dict[str, Any]) -> bool:
        """
        Handle the user or someone else leaving.

        Returns:
            True when the event was broadcast to every dialog or removed
            every dialog, so callers further up must not handle it again
        """
        if self._is_me(params.get('nick')):
            if params.get('dialog_id'):
                self.remove_dialog(params)
                return False
            for dialog in self.dialogs.to_array():
                self.remove_dialog({'dialog_id': dialog.dialog_id})
            self.update(force=True)
            return True

        if params.get('dialog_id'):
            return False

        is_quit = params.get('type') == 'quit'
        for dialog in self.dialogs.to_array():
            if is_quit:
                dialog.ws_event_quit(params)
            else:
                dialog.ws_event_part(params)
        return True

    def ws_event_quit(self, params: Dict[str, Any]) -> bool:
        return self.ws_event_part({**params, 'type': 'quit'})

    def ws_event_sent_join(self, params: Dict[str, Any]):
        self.ws_event_join(params)

    def ws_event_sent_list(self, params: Dict[str, Any]):
        args = params.get('args') or DEFAULT_LIST_ARGS
        vars_ = [len(params.get('dialogs') or []), params.get('n_dialogs') or 0, args]
        if params.get('done'):
            self.add_message({'message': 'Found %1 of %2 dialogs from %3.', 'vars': vars_})
        else:
            self.add_message({'message': 'Found %1 of %2 dialogs from %3, but dialogs are still loading.', 'vars': vars_})

    def ws_event_sent_query(self, params: Dict[str, Any]):
        if params.get('dialog_id'):
            self.ensure_dialog(params)

    def ws_event_sent_whois(self, params: Dict[str, Any]):
        channels = params.get('channels') or {}
        channels = [((channels[name] or {}).get('mode') or '') + name for name in sorted(channels)]
        idle_for = params.get('idle_for')
        vars_ = [params.get('nick'), params.get('host')]

        if idle_for and channels:
            message = '%1 (%2) has been idle for %3 in %4.'
            vars_ += [idle_for, ', '.join(channels)]
        elif idle_for:
            message = '%1 (%2) has been idle for %3, and is not active in any channels.'
            vars_.append(idle_for)
        else:
            message = '%1 (%2) is active in %3.'
            vars_.append(', '.join(channels))

        dialog = self.find_dialog(params) or self.find_dialog({'dialog_id': params.get('nick')}) or self
        dialog.add_message({'message': message, 'vars': vars_, 'sent': {**params, 'channels': channels}})

    def ws_event_topic(self, params: Dict[str, Any]):
        if not params.get('dialog_id'):
            return
        topic = params.get('topic') or ''
        dialog = self.ensure_dialog({**params, 'topic': topic})
        if topic:
            dialog.add_message({'message': 'Topic changed to: %1', 'vars': [topic]})
        else:
            dialog.add_message({'message': 'No topic is set.', 'vars': []})

    def _dialog_updated(self, dialog: Dialog):
        # Re-set so the collection picks up a changed sort key (name)
        self.dialogs.set(dialog.dialog_id, dialog)
        self.update(force=True)

    def _add_default_participants(self, dialog: Dialog):
        participants = [Participant(nick=self.nick, me=True)] if self.nick else []
        if dialog.is_private:
            participants.append(Participant(nick=dialog.name))
        for participant in participants:
            dialog.roster.upsert(participant)

    def _is_me(self, nick: Optional[str]) -> bool:
        return bool(nick) and bool(self.nick) and nick.lower() == self.nick.lower()

    def _normalize_update(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(params.get('url'), str):
            params['url'] = ConnURL(params['url'])
        return params

    def _operation_params(self) -> Dict[str, Any]:
        return {'connection_id': self.connection_id}

    def _calculate_frozen(self) -> str:
        return frozen_reason(self.state)
