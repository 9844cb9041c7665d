"""Dialog: a single channel or private conversation."""

from typing import Any, Dict, Optional

from .conversation import Conversation
from .reactive import ReactiveEntity
from .roster import Roster
from .util import is_private_name


class Dialog(Conversation, ReactiveEntity):
    """
    A channel or private conversation owned by a Connection.

    The dialog keeps its participant roster and an append-only message log.
    It only knows the id of its connection, never the Connection object.
    The frozen reason is written by the owning connection.
    """

    last_read_operation_id = 'setDialogLastRead'
    messages_operation_id = 'dialogMessages'

    def __init__(self, params: Optional[Dict[str, Any]] = None, api=None, **fields):
        """
        Initialize dialog.

        Args:
            params: Dialog fields, typically the protocol event that created it
            api: Optional Api used for last-read markers and history
            **fields: More dialog fields
        """
        super().__init__()
        params = {**(params or {}), **fields}
        dialog_id = params.get('dialog_id') or ''
        is_private = params.get('is_private')

        self.prop('ro', 'connection_id', params.get('connection_id') or '')
        self.prop('ro', 'dialog_id', dialog_id)
        self.prop('ro', 'is_private', is_private_name(dialog_id) if is_private is None else bool(is_private))
        self.prop('rw', 'name', params.get('name') or dialog_id)
        self.prop('rw', 'topic', params.get('topic') or '')
        self.prop('rw', 'mode', params.get('mode') or '')
        self.prop('rw', 'errors', params.get('errors') or 0)
        self.prop('rw', 'unread', params.get('unread') or 0)
        self.prop('rw', 'last_read', params.get('last_read'))
        self.prop('rw', 'last_active', params.get('last_active'))

        self.api = api
        self.roster = Roster()
        self._messages = []
        self._frozen_reason = params.get('frozen') or ''
        self._add_operations()

    def __repr__(self) -> str:
        return f"<Dialog {self.connection_id}/{self.dialog_id}>"

    def ws_event_part(self, params: Dict[str, Any]):
        self._remove_departed(params, '%1 parted.', '%1 parted: %2')

    def ws_event_quit(self, params: Dict[str, Any]):
        self._remove_departed(params, '%1 quit.', '%1 quit: %2')

    def ws_event_mode(self, params: Dict[str, Any]):
        """Apply "+o"/"-v" style changes to a participant, or set the dialog mode."""
        mode = params.get('mode') or ''
        nick = params.get('nick')
        if not nick:
            self.update(mode=mode)
            return

        participant = self.roster.get(nick)
        if participant is None:
            return
        self.roster.upsert({'nick': participant.nick, 'mode': apply_mode_change(participant.mode, mode)})
        self.add_message({'message': '%1 got mode %2 from %3.', 'vars': [participant.nick, mode, params.get('from') or '']})
        self.update(force=True)

    def ws_event_participants(self, params: Dict[str, Any]):
        """Replace the roster with the nick list from a names reply."""
        me_nicks = {p.nick.lower() for p in self.roster if p.me}
        self.roster.clear()
        for entry in params.get('participants') or []:
            entry = dict(entry)
            entry['me'] = entry['nick'].lower() in me_nicks
            self.roster.upsert(entry)
        self.update(force=True)

    def _operation_params(self) -> Dict[str, Any]:
        return {'connection_id': self.connection_id, 'dialog_id': self.dialog_id}

    def _remove_departed(self, params: Dict[str, Any], message: str, message_with_reason: str):
        nick = params.get('nick')
        participant = self.roster.remove(nick) if nick else None
        if participant is None:
            return
        reason = params.get('message')
        if reason:
            self.add_message({'message': message_with_reason, 'vars': [participant.nick, reason]})
        else:
            self.add_message({'message': message, 'vars': [participant.nick]})
        self.update(force=True)

    def _set_frozen(self, reason: str):
        reason = reason or ''
        if reason != self._frozen_reason:
            self._frozen_reason = reason
            self.update(force=True)

    def _calculate_frozen(self) -> str:
        return self._frozen_reason


def apply_mode_change(current: str, change: str) -> str:
    """apply_mode_change("v", "+o-v") -> "o" """
    modes = list(current or '')
    adding = True
    for char in change or '':
        if char in '+-':
            adding = char == '+'
        elif adding and char not in modes:
            modes.append(char)
        elif not adding and char in modes:
            modes.remove(char)
    return ''.join(modes)
