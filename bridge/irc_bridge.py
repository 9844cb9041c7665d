"""IRC transport using miniirc, translated into store protocol events."""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

import miniirc

from store import Connection

logger = logging.getLogger(__name__)

# NAMES/WHOIS prefix -> participant mode
PREFIX_MODES = {'~': 'q', '&': 'a', '@': 'o', '%': 'h', '+': 'v'}
CHANNEL_PREFIXES = '#&!+'
LIST_PROGRESS_EVERY = 200


def is_channel(name: str) -> bool:
    return bool(name) and name[0] in CHANNEL_PREFIXES


def split_prefix(name: str):
    """"@+bob" -> ("ov", "bob")"""
    mode = ''
    while name and name[0] in PREFIX_MODES:
        mode += PREFIX_MODES[name[0]]
        name = name[1:]
    return mode, name


class IrcBridge:
    """
    Feeds a Connection with events from an IRC server and sends its commands.

    miniirc calls the handlers on its own thread; every event is handed to
    the asyncio loop with call_soon_threadsafe() so the connection sees one
    event at a time, in arrival order.
    """

    def __init__(
        self,
        connection: Connection,
        dialogs: Optional[List[str]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        debug: bool = False
    ):
        """
        Initialize bridge.

        Args:
            connection: Connection to feed, its url/nick decide where to connect
            dialogs: Channels to join after connecting
            loop: Event loop that owns the connection (default: the running loop at connect())
            debug: Enable miniirc debug output
        """
        self.connection = connection
        self.dialogs = dialogs or []
        self.loop = loop
        self.debug = debug
        self.irc: Optional[miniirc.IRC] = None
        self.running = False

        self._names: Dict[str, List[Dict[str, str]]] = {}
        self._whois: Dict[str, Dict[str, Any]] = {}
        self._list: Dict[str, Any] = {'args': None, 'dialogs': []}
        # /list is reset from the loop thread, replies arrive on the miniirc thread
        self._list_lock = threading.Lock()

        connection.sender = self.send

    def dispatch(self, event: Dict[str, Any]):
        """Deliver an event to the connection on its event loop."""
        event = {'connection_id': self.connection.connection_id, **event}
        if self.loop is not None and self.loop.is_running():
            self.loop.call_soon_threadsafe(self.connection.handle_event, event)
        else:
            self.connection.handle_event(event)

    async def connect(self):
        """Connect to the IRC server named by the connection url."""
        url = self.connection.url
        self.loop = self.loop or asyncio.get_running_loop()
        logger.info("Connecting to %s:%s (tls: %s)", url.host, url.effective_port, url.tls)

        self.irc = miniirc.IRC(
            ip=url.host,
            port=url.effective_port,
            nick=self.connection.nick,
            channels=self.dialogs,
            ssl=url.tls,
            server_password=url.password,
            debug=self.debug,
            auto_connect=False
        )
        self.register_handlers(self.irc)

        self.dispatch({'type': 'connection', 'state': 'connecting'})
        try:
            self.irc.connect()
            self.running = True
        except OSError as e:
            logger.error("Connection to %s failed: %s", url.host, e)
            self.dispatch({'type': 'connection', 'state': 'unreachable', 'message': str(e)})
            raise

    def register_handlers(self, irc):
        """Attach the protocol handlers to a miniirc.IRC object."""
        irc.Handler('001', colon=False)(self.on_welcome)
        irc.Handler('JOIN', colon=False)(self.on_join)
        irc.Handler('PART', colon=False)(self.on_part)
        irc.Handler('KICK', colon=False)(self.on_kick)
        irc.Handler('QUIT', colon=False)(self.on_quit)
        irc.Handler('NICK', colon=False)(self.on_nick)
        irc.CmdHandler('PRIVMSG', 'NOTICE', colon=False)(self.on_message)
        irc.Handler('TOPIC', colon=False)(self.on_topic)
        irc.CmdHandler('331', '332', colon=False)(self.on_topic_reply)
        irc.Handler('353', colon=False)(self.on_names)
        irc.Handler('366', colon=False)(self.on_names_end)
        irc.Handler('MODE', colon=False)(self.on_mode)
        irc.CmdHandler('311', '317', '319', colon=False)(self.on_whois_reply)
        irc.Handler('318', colon=False)(self.on_whois_end)
        irc.Handler('322', colon=False)(self.on_list_reply)
        irc.Handler('323', colon=False)(self.on_list_end)
        irc.CmdHandler('401', '403', '433', colon=False)(self.on_error_reply)
        irc.CmdHandler('471', '473', '474', '475', colon=False)(self.on_join_error)
        irc.Handler('ERROR', colon=False)(self.on_server_error)

    def on_welcome(self, irc, hostmask, args):
        logger.info("Connected to %s as %s", self.connection.url.host, args[0] if args else self.connection.nick)
        self.dispatch({'type': 'connection', 'state': 'connected'})
        for line in (self.connection.on_connect_commands or '').splitlines():
            if line.strip():
                self.send({'message': line.strip()})

    def on_join(self, irc, hostmask, args):
        self.dispatch({'type': 'join', 'dialog_id': args[0], 'nick': hostmask[0]})

    def on_part(self, irc, hostmask, args):
        self.dispatch({
            'type': 'part',
            'dialog_id': args[0],
            'nick': hostmask[0],
            'message': args[1] if len(args) > 1 else ''
        })

    def on_kick(self, irc, hostmask, args):
        self.dispatch({
            'type': 'part',
            'dialog_id': args[0],
            'nick': args[1],
            'kicker': hostmask[0],
            'message': args[2] if len(args) > 2 else ''
        })

    def on_quit(self, irc, hostmask, args):
        self.dispatch({'type': 'quit', 'nick': hostmask[0], 'message': args[0] if args else ''})

    def on_nick(self, irc, hostmask, args):
        self.dispatch({'type': 'nick_change', 'old_nick': hostmask[0], 'new_nick': args[0]})

    def on_message(self, irc, command, hostmask, args):
        target, text = args[0], args[-1]
        nick = hostmask[0]
        msg_type = 'private' if command == 'PRIVMSG' else 'notice'
        if text.startswith('\x01ACTION ') and text.endswith('\x01'):
            text, msg_type = text[8:-1], 'action'

        event = {'event': 'message', 'type': msg_type, 'from': nick, 'message': text}
        if is_channel(target):
            event['dialog_id'] = target
        elif '.' not in nick:
            # Server notices have a host name as sender and go to the connection log
            event['dialog_id'] = nick
        self.dispatch(event)

    def on_topic(self, irc, hostmask, args):
        self.dispatch({'type': 'topic', 'dialog_id': args[0], 'topic': args[-1] if len(args) > 1 else ''})

    def on_topic_reply(self, irc, command, hostmask, args):
        # 331 RPL_NOTOPIC: me channel :No topic is set
        # 332 RPL_TOPIC: me channel :topic
        no_topic = command == '331' or len(args) < 3
        self.dispatch({'type': 'topic', 'dialog_id': args[1], 'topic': '' if no_topic else args[-1]})

    def on_names(self, irc, hostmask, args):
        # me = #channel :nick1 @nick2 +nick3
        channel = args[2]
        for name in args[3].split():
            mode, nick = split_prefix(name)
            self._names.setdefault(channel, []).append({'nick': nick, 'mode': mode})

    def on_names_end(self, irc, hostmask, args):
        channel = args[1]
        participants = self._names.pop(channel, [])
        self.dispatch({'type': 'participants', 'dialog_id': channel, 'participants': participants})

    def on_mode(self, irc, hostmask, args):
        if not is_channel(args[0]) or len(args) < 2:
            return
        event = {'type': 'mode', 'dialog_id': args[0], 'mode': args[1], 'from': hostmask[0]}
        if len(args) > 2:
            event['nick'] = args[2]
        self.dispatch(event)

    def on_whois_reply(self, irc, command, hostmask, args):
        nick = args[1]
        info = self._whois.setdefault(nick.lower(), {'nick': nick, 'host': '', 'channels': {}, 'idle_for': 0})
        if command == '311':
            # me nick user host * :realname
            info['host'] = f"{args[2]}@{args[3]}"
            info['name'] = args[-1]
        elif command == '317':
            info['idle_for'] = int(args[2])
        elif command == '319':
            for name in args[-1].split():
                _, channel = split_prefix(name)
                info['channels'][channel] = {'mode': name[:len(name) - len(channel)]}

    def on_whois_end(self, irc, hostmask, args):
        info = self._whois.pop(args[1].lower(), None)
        if info is None:
            return
        self.dispatch({'type': 'sent_whois', 'dialog_id': info['nick'], **info})

    def on_list_reply(self, irc, hostmask, args):
        # me #channel n_users :topic
        with self._list_lock:
            self._list['dialogs'].append({
                'dialog_id': args[1],
                'name': args[1],
                'n_users': int(args[2]) if args[2].isdigit() else 0,
                'topic': args[-1] if len(args) > 3 else ''
            })
            progress = len(self._list['dialogs']) % LIST_PROGRESS_EVERY == 0
            args_, dialogs = self._list['args'], list(self._list['dialogs'])
        if progress:
            self._dispatch_list(args_, dialogs, done=False)

    def on_list_end(self, irc, hostmask, args):
        with self._list_lock:
            args_, dialogs = self._list['args'], list(self._list['dialogs'])
            self._list = {'args': None, 'dialogs': []}
        self._dispatch_list(args_, dialogs, done=True)

    def on_error_reply(self, irc, command, hostmask, args):
        event = {'type': 'error', 'errors': [{'message': args[-1]}], 'message': args[1] if len(args) > 2 else ''}
        if len(args) > 2 and command in ('401', '403'):
            event['dialog_id'] = args[1]
        self.dispatch(event)

    def on_join_error(self, irc, command, hostmask, args):
        # 475 ERR_BADCHANNELKEY: me #channel :Cannot join channel (+k)
        channel = args[1]
        reason = 'Password protected.' if command == '475' else args[-1]
        self.dispatch({
            'type': 'error',
            'dialog_id': channel,
            'frozen': reason,
            'errors': [{'message': reason}],
            'message': channel
        })

    def on_server_error(self, irc, hostmask, args):
        logger.warning("IRC ERROR: %s", args)
        self.dispatch({'type': 'connection', 'state': 'disconnected', 'message': args[-1] if args else ''})

    def send(self, payload: Dict[str, Any]):
        """
        Send a message or a /command from the connection.

        Args:
            payload: {"message": ..., "dialog_id": ...} as built by Connection.send()
        """
        message = (payload.get('message') or '').strip()
        dialog_id = payload.get('dialog_id') or ''
        if not message:
            return

        if self.irc is None:
            self.dispatch({'type': 'error', 'dialog_id': dialog_id, 'errors': [{'message': 'Not connected.'}]})
            return

        if not message.startswith('/'):
            self._send_text(dialog_id, message)
            return

        command, _, rest = message[1:].partition(' ')
        command, rest = command.lower(), rest.strip()
        logger.debug("Sending /%s %s", command, rest)

        if command == 'join':
            self.irc.quote('JOIN', *rest.split()[:2])
        elif command in ('part', 'close'):
            target = rest or dialog_id
            if is_channel(target):
                self.irc.quote('PART', target)
            else:
                self.dispatch({'type': 'part', 'dialog_id': target, 'nick': self.connection.nick})
        elif command == 'query':
            target = rest.split()[0] if rest else ''
            if target:
                self.dispatch({'type': 'sent_query', 'dialog_id': target, 'is_private': True})
        elif command == 'nick':
            self.irc.quote('NICK', rest)
        elif command == 'topic':
            if rest:
                self.irc.quote('TOPIC', dialog_id, ':' + rest)
            else:
                self.irc.quote('TOPIC', dialog_id)
        elif command == 'whois':
            self.irc.quote('WHOIS', rest)
        elif command == 'list':
            with self._list_lock:
                self._list = {'args': rest or None, 'dialogs': []}
            if rest:
                self.irc.quote('LIST', rest)
            else:
                self.irc.quote('LIST')
        elif command == 'msg':
            target, _, text = rest.partition(' ')
            self._send_text(target, text)
        elif command == 'me':
            self.irc.msg(dialog_id, f"\x01ACTION {rest}\x01")
            self._echo(dialog_id, rest, 'action')
        elif command == 'quote':
            self.irc.quote(rest)
        else:
            self.irc.quote(command.upper(), rest)

    async def run_forever(self):
        """Connect and keep running until shutdown()."""
        await self.connect()
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Disconnect from the server."""
        self.running = False
        if self.irc:
            self.irc.disconnect()
            self.irc = None
        self.dispatch({'type': 'connection', 'state': 'disconnected'})
        logger.info("Bridge for %s stopped", self.connection.connection_id)

    def _dispatch_list(self, args: Optional[str], dialogs: List[Dict[str, Any]], done: bool):
        self.dispatch({
            'type': 'sent_list',
            'args': args,
            'dialogs': dialogs,
            'n_dialogs': len(dialogs),
            'done': done
        })

    def _send_text(self, target: str, text: str):
        if not target or not text:
            return
        self.irc.msg(target, text)
        self._echo(target, text, 'private')

    def _echo(self, target: str, text: str, msg_type: str):
        # IRC servers do not echo our own messages back
        event = {'event': 'message', 'type': msg_type, 'from': self.connection.nick, 'message': text}
        if target:
            event['dialog_id'] = target
        self.dispatch(event)

