# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
NowPlayingService — HTTP control surface + WebSocket push for the UI.

Routes:

    GET  /status                 canonical now-playing JSON
    POST /play-pause /play /pause /next /previous
    POST /seek    {position}     seconds; 400 when not a number
    POST /volume  {volume}       0.0 – 1.0; 400 when not a number
    POST /shuffle                toggle
    POST /loop                   cycle repeat, returns the new mode
    GET  /players                local MPRIS player identifiers
    GET  /ws                     push: media_update, notice
    GET  /mode   POST /mode      local | remote
    POST /panel  {enabled}       start / stop polling

OAuth (PKCE).  The service is its own loopback redirect target, so the
browser lands on /callback directly.  /auth/code accepts a pasted code
and state for setups where the redirect cannot reach this host.

    GET  /auth/start  → 302 to Spotify
    GET  /callback    ?code=&state=
    POST /auth/code   {code, state}
    GET  /auth/status
    POST /disconnect
"""

import asyncio
import json
import logging
import signal

from aiohttp import web

from .backends import InvalidPayload
from .controller import NowPlayingController
from .lib.state import BackendMode, Notice
from .spotify.auth import AuthorizationError

log = logging.getLogger(__name__)

CONNECTED_HTML = '''<!DOCTYPE html><html><head>
<meta charset="UTF-8"><meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>NowPlaying - Connected</title>
<style>
body{font-family:'Helvetica Neue',sans-serif;background:#000;color:#fff;padding:20px;text-align:center}
h1{font-size:24px;font-weight:300;margin:50px 0 20px;letter-spacing:1px}
</style></head><body>
<h1>Connected to Spotify</h1>
<p style="color:#999">You can close this page.</p>
</body></html>'''


class NowPlayingService:

    def __init__(self, settings, **controller_kwargs):
        self.settings = settings
        self.controller = NowPlayingController(
            settings, on_state=self._on_state, notify=self.notify, **controller_kwargs)
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None
        self._last_pushed: dict | None = None
        self._pending: set[asyncio.Task] = set()

    # ── App ──

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/status", self._handle_status)
        app.router.add_post("/play-pause", self._command_handler("toggle"))
        app.router.add_post("/play", self._command_handler("play"))
        app.router.add_post("/pause", self._command_handler("pause"))
        app.router.add_post("/next", self._command_handler("next"))
        app.router.add_post("/previous", self._command_handler("previous"))
        app.router.add_post("/seek", self._handle_seek)
        app.router.add_post("/volume", self._handle_volume)
        app.router.add_post("/shuffle", self._handle_shuffle)
        app.router.add_post("/loop", self._handle_loop)
        app.router.add_get("/players", self._handle_players)
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/mode", self._handle_get_mode)
        app.router.add_post("/mode", self._handle_set_mode)
        app.router.add_post("/panel", self._handle_panel)
        app.router.add_get("/auth/start", self._handle_auth_start)
        app.router.add_get("/callback", self._handle_callback)
        app.router.add_post("/auth/code", self._handle_auth_code)
        app.router.add_get("/auth/status", self._handle_auth_status)
        app.router.add_post("/disconnect", self._handle_disconnect)
        app.router.add_route("OPTIONS", "/{tail:.*}", self._handle_cors)
        return app

    async def start(self):
        """Start the controller, then listen on settings.host:port."""
        self.controller.bridge.check_available()
        await self.controller.start()
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await site.start()
        log.info("HTTP API on %s:%d (%s backend)",
                 self.settings.host, self.settings.port, self.settings.mode.value)

    async def stop(self):
        await self.controller.stop()
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    # ── Push ──

    async def _on_state(self, state):
        data = state.to_dict()
        if data == self._last_pushed:
            return
        self._last_pushed = data
        await self._broadcast({"type": "media_update", "data": data})

    def notify(self, notice: Notice):
        """Log a notice and push it to every WebSocket client."""
        log.log(logging.WARNING if notice.level in ("warning", "error") else logging.INFO,
                "Notice (%s): %s", notice.level, notice.message)
        if not self._ws_clients:
            return
        try:
            task = asyncio.get_running_loop().create_task(
                self._broadcast({"type": "notice", **notice.to_dict()}))
        except RuntimeError:
            return  # no loop (sync caller outside the service)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _broadcast(self, message: dict):
        if not self._ws_clients:
            return
        text = json.dumps(message)
        disconnected = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send_str(text)
            except Exception:
                disconnected.add(ws)
        self._ws_clients -= disconnected

    async def _handle_ws(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._ws_clients.add(ws)
        log.info("WebSocket client connected (%d total)", len(self._ws_clients))
        try:
            if self._last_pushed is not None:
                await ws.send_json({"type": "media_update", "data": self._last_pushed})
            async for _ in ws:
                pass  # push-only
        finally:
            self._ws_clients.discard(ws)
            log.info("WebSocket client disconnected (%d remaining)", len(self._ws_clients))
        return ws

    # ── Helpers ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    def _json(self, data, status=200):
        return web.json_response(data, status=status, headers=self._cors_headers())

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    @staticmethod
    async def _body(request) -> dict:
        try:
            data = await request.json()
        except (ValueError, UnicodeDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _result_body(result) -> dict:
        body = {"success": result.ok}
        if not result.ok:
            body["status"] = result.status.value
            body["message"] = result.message
        return body

    # ── Player routes ──

    async def _handle_status(self, request):
        state = await self.controller.current_state()
        return self._json(state.to_dict())

    def _command_handler(self, action):
        async def handler(request):
            try:
                result = await getattr(self.controller.router, action)()
            except Exception as e:
                log.exception("Command error")
                return self._json({"success": False, "error": str(e)}, status=500)
            return self._json(self._result_body(result))
        return handler

    async def _handle_seek(self, request):
        data = await self._body(request)
        try:
            result = await self.controller.router.seek(data.get("position"))
        except InvalidPayload:
            return self._json({"error": "Position required"}, status=400)
        return self._json(self._result_body(result))

    async def _handle_volume(self, request):
        data = await self._body(request)
        try:
            result = await self.controller.router.set_volume(data.get("volume"))
        except InvalidPayload:
            return self._json({"error": "Volume required"}, status=400)
        return self._json(self._result_body(result))

    async def _handle_shuffle(self, request):
        result = await self.controller.router.toggle_shuffle()
        return self._json(self._result_body(result))

    async def _handle_loop(self, request):
        result, mode = await self.controller.router.cycle_repeat()
        body = self._result_body(result)
        body["mode"] = mode.value
        return self._json(body)

    async def _handle_players(self, request):
        players = await self.controller.bridge.list_players()
        return self._json({"players": players})

    # ── Settings routes ──

    async def _handle_get_mode(self, request):
        return self._json({"mode": self.controller.mode.value})

    async def _handle_set_mode(self, request):
        data = await self._body(request)
        try:
            mode = BackendMode(str(data.get("mode", "")).lower())
        except ValueError:
            return self._json({"error": "mode must be 'local' or 'remote'"}, status=400)
        await self.controller.switch_mode(mode)
        return self._json({"success": True, "mode": mode.value})

    async def _handle_panel(self, request):
        data = await self._body(request)
        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            return self._json({"error": "enabled must be true or false"}, status=400)
        self.controller.set_enabled(enabled)
        return self._json({"success": True, "enabled": enabled})

    # ── OAuth routes ──

    async def _handle_auth_start(self, request):
        try:
            _, url = self.controller.auth.begin_authorization()
        except AuthorizationError as e:
            self.notify(Notice("warning", str(e)))
            return web.Response(text=str(e), status=400)
        raise web.HTTPFound(url)

    async def _handle_callback(self, request):
        error = request.query.get("error")
        if error:
            self.controller.auth.abandon_authorization()
            return web.Response(text=f"Spotify authorization failed: {error}", status=400)
        ok, message = await self._complete(
            request.query.get("code", ""), request.query.get("state", ""))
        if not ok:
            return web.Response(text=message, status=400)
        return web.Response(text=CONNECTED_HTML, content_type="text/html")

    async def _handle_auth_code(self, request):
        data = await self._body(request)
        ok, message = await self._complete(data.get("code", ""), data.get("state", ""))
        if not ok:
            return self._json({"success": False, "error": message}, status=400)
        return self._json({"success": True})

    async def _complete(self, code, state):
        if not code:
            return False, "Authorization code required"
        try:
            ok = await self.controller.auth.complete_authorization(code, state)
        except AuthorizationError as e:
            log.warning("OAuth callback rejected: %s", e)
            return False, "Session expired. Start the connection again."
        if not ok:
            return False, "Failed to authenticate with Spotify."
        self.controller.on_authorized()
        return True, ""

    async def _handle_auth_status(self, request):
        auth = self.controller.auth
        return self._json({
            "connected": bool(auth.tokens.access_token) and not auth.revoked,
            "state": auth.state.value,
            "needs_reauth": auth.revoked,
        })

    async def _handle_disconnect(self, request):
        await self.controller.auth.disconnect()
        return self._json({"success": True})
