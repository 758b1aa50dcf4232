"""Authentication module (bearer tokens + identity attachment).

Services:
    - TokenService: Issues and verifies signed bearer tokens.
    - IdentityMiddleware: Attaches the verified identity to each request or
      WebSocket handshake; anonymous when the credential is missing or invalid.
"""
