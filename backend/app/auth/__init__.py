"""Authentication module (accounts and JWT bearer tokens).

Accounts live in ``UserService``; ``/api/v1/auth`` registers and signs them
in, issuing the tokens. The same verification path serves both transports:
- REST handlers depend on ``get_current_identity``.
- The realtime handshake calls ``verify_token`` through the connection
  authenticator before a connection is admitted.
"""
