"""Data models for roster entries and log messages."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r'%(\d+)')


@dataclass
class Participant:
    """Dialog participant."""
    nick: str
    me: bool = False
    mode: str = ''

    @classmethod
    def from_params(cls, params) -> 'Participant':
        if isinstance(params, Participant):
            return cls(nick=params.nick, me=params.me, mode=params.mode)
        return cls(
            nick=params['nick'],
            me=bool(params.get('me', False)),
            mode=params.get('mode') or ''
        )

    def to_dict(self):
        return {'nick': self.nick, 'me': self.me, 'mode': self.mode}


@dataclass
class Message:
    """
    Log entry.

    "message" is a template where %1, %2... refer to the values in "vars".
    Inbound chat lines carry no vars and are shown as-is.
    """
    message: str = ''
    vars: Optional[List[Any]] = None
    type: str = 'notice'  # notice, private, action, error
    from_: Optional[str] = None
    ts: Optional[datetime] = None
    sent: Optional[Dict[str, Any]] = None
    highlight: bool = False

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> 'Message':
        """Build a message from an event or add_message() argument."""
        ts = params.get('ts')
        try:
            if isinstance(ts, str):
                ts = datetime.fromisoformat(ts.replace('Z', '+00:00'))
            elif isinstance(ts, (int, float)):
                ts = datetime.fromtimestamp(ts)
        except (ValueError, OverflowError, OSError):
            logger.debug("Invalid message timestamp %r, using current time", ts)
            ts = None

        vars_ = params.get('vars')
        return cls(
            message=params.get('message') or '',
            vars=list(vars_) if vars_ is not None else None,
            type=params.get('type') or 'notice',
            from_=params.get('from'),
            ts=ts or datetime.now(),
            sent=params.get('sent'),
            highlight=bool(params.get('highlight', False))
        )

    @property
    def is_error(self) -> bool:
        return self.type == 'error'

    @property
    def text(self) -> str:
        """Message with %n placeholders substituted."""
        if not self.vars:
            return self.message
        values = self.vars

        def _sub(match):
            index = int(match.group(1)) - 1
            return str(values[index]) if 0 <= index < len(values) else match.group(0)

        return _VAR_PATTERN.sub(_sub, self.message)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'message': self.message,
            'vars': self.vars,
            'type': self.type,
            'from': self.from_,
            'ts': self.ts.isoformat() if self.ts else None,
            'sent': self.sent,
            'highlight': self.highlight
        }

    def to_context_string(self) -> str:
        """Convert to human-readable log line."""
        prefix = f"[{self.ts.strftime('%H:%M:%S')}] " if self.ts else ''
        if self.from_:
            return f"{prefix}<{self.from_}> {self.text}"
        return f"{prefix}-!- {self.text}"
