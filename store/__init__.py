"""In-memory chat state: connections, dialogs, rosters and message logs."""

from .conn_url import ConnURL
from .connection import Connection, frozen_reason
from .dialog import Dialog
from .models import Message, Participant
from .reactive import ReactiveEntity
from .session import Session
from .sorted_map import SortedMap

__all__ = [
    'ConnURL',
    'Connection',
    'Dialog',
    'Message',
    'Participant',
    'ReactiveEntity',
    'Session',
    'SortedMap',
    'frozen_reason',
]
