#!/usr/bin/env python3
"""Main entry point: keeps a chat session in sync with an IRC server."""

import os
import sys
import asyncio
import logging
from dotenv import load_dotenv

from api import Api
from bridge import IrcBridge
from store import Session


def print_message(msg, source):
    """Render new log entries on stdout."""
    name = getattr(source, 'dialog_id', '') or source.connection_id
    print(f"[{name}] {msg.to_context_string()}")


async def main():
    """Main function."""
    # Load environment variables
    load_dotenv()

    # Connection Configuration
    connection_url = os.getenv('CONVOS_CONNECTION_URL', 'irc://irc.libera.chat:6697?nick=convos_sync&tls=1')
    connection_id = os.getenv('CONVOS_CONNECTION_ID', 'irc-libera')
    dialogs = os.getenv('CONVOS_DIALOGS', '#convos').split(',')
    dialogs = [d.strip() for d in dialogs if d.strip()]
    on_connect_commands = os.getenv('CONVOS_ON_CONNECT', '').replace('\\n', '\n')

    # Api Configuration
    api_url = os.getenv('CONVOS_API_URL', '')

    # Logging Configuration
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    print("="*60)
    print("Convos Sync")
    print("="*60)
    print(f"Connection: {connection_id} ({connection_url})")
    print(f"Dialogs: {', '.join(dialogs) or '-'}")
    print(f"Api: {api_url or 'disabled'}")
    print("="*60)

    session = Session(api=Api(api_url) if api_url else None)
    session.on('message', print_message)
    connection = session.ensure_connection({
        'connection_id': connection_id,
        'url': connection_url,
        'on_connect_commands': on_connect_commands,
    })

    bridge = IrcBridge(connection, dialogs=dialogs)
    try:
        await bridge.run_forever()
    finally:
        session.teardown()


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested...")
        sys.exit(0)
