"""Participant roster keyed by nick."""

from typing import List, Optional

from .models import Participant
from .sorted_map import SortedMap

# Lower rank sorts first: operators, half-ops, voiced, everyone else.
MODE_RANK = {'q': 0, 'a': 1, 'o': 2, 'h': 3, 'v': 4}


def mode_rank(mode: str) -> int:
    ranks = [MODE_RANK[m] for m in (mode or '') if m in MODE_RANK]
    return min(ranks) if ranks else len(MODE_RANK)


def sort_participants(a: Participant, b: Participant) -> int:
    return (
        (mode_rank(a.mode) - mode_rank(b.mode))
        or _cmp(a.nick.lower(), b.nick.lower())
        or _cmp(a.nick, b.nick)
    )


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


class Roster:
    """
    Participants of one dialog.

    Nicks are matched case-insensitively, so there is at most one entry
    per nick.
    """

    def __init__(self):
        self._participants = SortedMap(sorter=sort_participants)

    def __contains__(self, nick) -> bool:
        return bool(nick) and nick.lower() in self._participants

    def __iter__(self):
        return iter(self._participants)

    def __len__(self) -> int:
        return len(self._participants)

    def get(self, nick: str) -> Optional[Participant]:
        return self._participants.get(nick.lower()) if nick else None

    def nicks(self) -> List[str]:
        return [p.nick for p in self._participants]

    def to_list(self) -> List[Participant]:
        return self._participants.to_array()

    def upsert(self, params) -> Participant:
        """
        Add a participant, or merge the given fields into an existing one.

        Args:
            params: dict with "nick" and optional "me"/"mode", or a Participant

        Returns:
            The stored Participant
        """
        if isinstance(params, Participant):
            params = params.to_dict()

        existing = self.get(params['nick'])
        if existing is None:
            participant = Participant.from_params(params)
        else:
            participant = Participant(
                nick=params['nick'],
                me=bool(params['me']) if 'me' in params else existing.me,
                mode=(params.get('mode') or '') if 'mode' in params else existing.mode
            )

        self._participants.set(participant.nick.lower(), participant)
        return participant

    def remove(self, nick: str) -> Optional[Participant]:
        participant = self.get(nick)
        if participant:
            self._participants.delete(nick.lower())
        return participant

    def rename(self, old_nick: str, new_nick: str) -> Optional[Participant]:
        """Move an entry to a new nick, keeping its flags. None if old_nick is absent."""
        participant = self.remove(old_nick)
        if participant is None:
            return None
        return self.upsert({'nick': new_nick, 'me': participant.me, 'mode': participant.mode})

    def clear(self):
        self._participants.clear()
