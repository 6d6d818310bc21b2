"""
NowPlaying — observe and control "now playing" media from one UI.

Two backends sit behind one interface:

  local   any MPRIS player (Spotify desktop, VLC, Firefox …) via playerctl
  remote  the user's Spotify session via the Web API, OAuth2 PKCE

A polling scheduler fetches the active backend's state once per period,
normalises it to PlayerState and pushes it to the UI.  UI actions go the
other way through the command router.  Exactly one backend is active; a
mode switch tears the scheduler down and builds a new one.
"""

__version__ = "0.1.0"
