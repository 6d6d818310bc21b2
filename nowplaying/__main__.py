#!/usr/bin/env python3
"""
NowPlaying service (nowplaying)

Serves the now-playing HTTP API for a UI panel.  Plays nothing itself:
it watches and controls either a local MPRIS player (playerctl) or the
user's Spotify session (Web API, PKCE).

Usage:
    python -m nowplaying [--mode local|remote] [--port 8780] [--interval 1.0] [-v]
"""

import argparse
import asyncio
import logging

from .lib.config import Settings
from .lib.state import BackendMode
from .service import NowPlayingService


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="nowplaying", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--mode", choices=[m.value for m in BackendMode],
                        help="backend to start with (default: config backend.mode)")
    parser.add_argument("--host", help="listen address (default: config server.host)")
    parser.add_argument("--port", type=int, help="listen port (default: config server.port)")
    parser.add_argument("--interval", type=float, help="poll period in seconds")
    parser.add_argument("--client-id", help="Spotify client id")
    parser.add_argument("--player", help="pin playerctl to one player (e.g. spotify, vlc)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def build_settings(args) -> Settings:
    settings = Settings.from_config()
    if args.mode:
        settings.mode = BackendMode(args.mode)
    if args.interval and args.interval > 0:
        settings.poll_interval = args.interval
    if args.client_id:
        settings.client_id = args.client_id
    if args.player:
        settings.bridge_player = args.player
    if args.host or args.port:
        default_redirect = f"http://{settings.host}:{settings.port}/callback"
        settings.host = args.host or settings.host
        settings.port = args.port or settings.port
        if settings.redirect_uri == default_redirect:
            settings.redirect_uri = f"http://{settings.host}:{settings.port}/callback"
    return settings


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='[%(levelname)s] %(message)s')
    service = NowPlayingService(build_settings(args))
    asyncio.run(service.run())


if __name__ == '__main__':
    main()
