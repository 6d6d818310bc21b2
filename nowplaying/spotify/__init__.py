"""
Spotify Web API credentials: PKCE helpers, token store and TokenManager.
"""
