"""Base for store entities with declared properties and change notifications."""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

RO = 'ro'
RW = 'rw'


class ReactiveEntity:
    """
    Holds a set of declared properties and notifies subscribers about changes.

    Properties are declared with prop() as either read-only ("ro") or
    read-write ("rw"). Read-only properties can only be written by the
    entity itself or its owner through _set_prop(); update() only merges
    read-write properties. Properties are read as plain attributes, but
    assigning to them directly raises AttributeError.

    Events:
        update: the entity changed, subscribers should re-read it.
        message: a message was appended (see Dialog.add_message()).
    """

    def __init__(self):
        self._props: Dict[str, Any] = {}
        self._ro_props = set()
        self._rw_props = set()
        self._subscribers: Dict[str, List[Callable]] = defaultdict(list)

    def __getattr__(self, name):
        props = self.__dict__.get('_props')
        if props is not None and name in props:
            return props[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name, value):
        props = self.__dict__.get('_props')
        if props is not None and name in props:
            raise AttributeError(f"{name!r} is a declared property, use update() instead")
        super().__setattr__(name, value)

    def prop(self, mode: str, name: str, value: Any = None):
        """
        Declare a property.

        Args:
            mode: "ro" or "rw"
            name: Property name
            value: Initial value
        """
        if mode not in (RO, RW):
            raise ValueError(f"Invalid property mode: {mode}")
        if name in self._props:
            raise ValueError(f"Property {name!r} is already declared")
        (self._ro_props if mode == RO else self._rw_props).add(name)
        self._props[name] = value

    def props(self) -> Dict[str, Any]:
        """Snapshot of all declared properties."""
        return dict(self._props)

    def update(self, params: Optional[Dict[str, Any]] = None, force: bool = False, **fields) -> 'ReactiveEntity':
        """
        Merge read-write properties and emit "update" if anything changed.

        Unknown keys are ignored, so a raw protocol event can be passed in.
        Read-only keys are never written.

        Args:
            params: Fields to merge
            force: Emit "update" even if no field changed
            **fields: More fields to merge

        Returns:
            self
        """
        params = dict(params or {})
        params.update(fields)
        force = bool(params.pop('force', False)) or force
        params = self._normalize_update(params)

        changed = False
        for name, value in params.items():
            if name in self._rw_props:
                if self._props[name] != value:
                    self._props[name] = value
                    changed = True
            elif name in self._ro_props and self._props[name] != value:
                logger.debug("Ignoring write to read-only property %s on %r", name, self)

        if changed or force:
            self.emit('update', self)
        return self

    def is_(self, status: str) -> bool:
        """Check a status name. Subclasses test their own statuses first."""
        if status == 'frozen':
            return bool(self.frozen)
        if status == 'private':
            return bool(self._props.get('is_private'))
        if status == 'unread':
            return (self._props.get('unread') or 0) > 0
        if status == 'error':
            return (self._props.get('errors') or 0) > 0
        return False

    @property
    def frozen(self) -> str:
        """Why the entity is unusable, or '' when it is usable."""
        return self._calculate_frozen()

    def on(self, event_name: str, cb: Callable) -> Callable[[], None]:
        """
        Subscribe to an event.

        Returns:
            A function that removes the subscription
        """
        self._subscribers[event_name].append(cb)

        def unsubscribe():
            subscribers = self._subscribers.get(event_name, [])
            if cb in subscribers:
                subscribers.remove(cb)

        return unsubscribe

    def once(self, event_name: str, cb: Callable) -> Callable[[], None]:
        def wrapper(*args):
            unsubscribe()
            cb(*args)

        unsubscribe = self.on(event_name, wrapper)
        return unsubscribe

    def off(self, event_name: Optional[str] = None):
        """Remove all subscribers of one event, or of every event."""
        if event_name is None:
            self._subscribers.clear()
        else:
            self._subscribers.pop(event_name, None)

    def emit(self, event_name: str, *args):
        for cb in list(self._subscribers.get(event_name, [])):
            try:
                cb(*args)
            except Exception:
                logger.exception("Subscriber for %r on %r failed", event_name, self)

    def _set_prop(self, name: str, value: Any):
        """Owner-side write, bypassing the read-only check."""
        if name not in self._props:
            raise KeyError(name)
        self._props[name] = value

    def _normalize_update(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return params

    def _calculate_frozen(self) -> str:
        return ''
