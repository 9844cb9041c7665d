"""Message log and roster behavior shared by Connection and Dialog."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from api import ApiError
from .models import Message, Participant

logger = logging.getLogger(__name__)

UNREAD_MESSAGE_TYPES = ('private', 'action')


class Conversation:
    """
    Mixin for ReactiveEntity subclasses that own a roster and a message log.

    Expects the entity to set "roster", "_messages" and "api" and to declare
    the "unread", "last_read" and "last_active" properties.
    """

    last_read_operation_id = ''
    messages_operation_id = ''

    @property
    def messages(self) -> tuple:
        """Read-only snapshot of the message log."""
        return tuple(self._messages)

    @property
    def me(self) -> Optional[Participant]:
        for participant in self.roster:
            if participant.me:
                return participant
        return None

    def add_message(self, params) -> Message:
        """
        Append a message to the log and emit "message".

        Args:
            params: dict with "message" and optional "vars", "type", "from", "ts", "sent"

        Returns:
            The appended Message
        """
        msg = params if isinstance(params, Message) else Message.from_params(params)
        self._messages.append(msg)
        self._track_activity(msg)
        self.emit('message', msg, self)
        return msg

    def participants(self, entries: Optional[Iterable] = None) -> List[Participant]:
        """
        Add or refresh roster entries.

        Args:
            entries: dicts with "nick" and optional "me"/"mode", or Participants

        Returns:
            Sorted snapshot of the roster
        """
        if entries:
            for entry in entries:
                self.roster.upsert(entry)
            self.update(force=True)
        return self.roster.to_list()

    def participant(self, nick: str) -> Optional[Participant]:
        return self.roster.get(nick)

    def remove_participant(self, nick: str) -> Optional[Participant]:
        participant = self.roster.remove(nick)
        if participant:
            self.update(force=True)
        return participant

    def ws_event_nick_change(self, params: Dict[str, Any]):
        old_nick, new_nick = params.get('old_nick'), params.get('new_nick')
        if not old_nick or not new_nick or old_nick not in self.roster:
            return
        self.roster.rename(old_nick, new_nick)
        self.add_message({'message': '%1 changed nick to %2.', 'vars': [old_nick, new_nick]})
        self.update(force=True)

    def set_last_read(self) -> Optional[str]:
        """
        Persist the "last read" marker through the api.

        Returns:
            The stored marker, or None if the request was not made or failed
        """
        if self.set_last_read_op is None:
            logger.debug("No api for %r, last read marker is not stored", self)
            return None

        try:
            res = self.set_last_read_op.perform(self._operation_params())
        except ApiError as e:
            logger.warning("Could not set last read for %r: %s", self, e)
            self.add_message({'message': 'Could not mark as read: %1', 'vars': [str(e)], 'type': 'error'})
            return None

        last_read = (res or {}).get('last_read') or datetime.now().isoformat()
        self.update(last_read=last_read, unread=0)
        return last_read

    def load_messages(self, params: Optional[Dict[str, Any]] = None) -> List[Message]:
        """
        Fetch a page of history through the api.

        A page requested with "after" is appended to the log; any other page
        holds older messages and is inserted in front of the existing ones.

        Args:
            params: Extra request parameters such as "before", "after" or "limit"

        Returns:
            The messages of the page
        """
        if self.messages_op is None:
            logger.debug("No api for %r, history is not loaded", self)
            return []

        params = params or {}
        try:
            res = self.messages_op.perform({**self._operation_params(), **params})
        except ApiError as e:
            logger.warning("Could not load messages for %r: %s", self, e)
            self.add_message({'message': 'Could not load messages: %1', 'vars': [str(e)], 'type': 'error'})
            return []

        page = [Message.from_params(m) for m in (res or {}).get('messages', [])]
        if params.get('after'):
            self._messages.extend(page)
        else:
            self._messages[:0] = page
        self.update(force=True)
        return page

    def _add_operations(self):
        self.set_last_read_op = self.api.operation(self.last_read_operation_id) if self.api else None
        self.messages_op = self.api.operation(self.messages_operation_id) if self.api else None

    def _operation_params(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _track_activity(self, msg: Message):
        if msg.type not in UNREAD_MESSAGE_TYPES:
            return
        fields = {'last_active': (msg.ts or datetime.now()).isoformat()}
        me = self.me
        if msg.from_ and not (me and msg.from_.lower() == me.nick.lower()):
            fields['unread'] = (self.unread or 0) + 1
        self.update(fields)
