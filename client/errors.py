"""
client/errors.py -- Failures of the client-side Authorization Code flow.

  StateMismatch          400  anti-forgery check failed; fatal, never retried
  AuthorizationDenied    400  the server redirected back with ?error=
  TokenExchangeError     502  token endpoint refused the code (carries its code)
  TransientExchangeError 503  token endpoint unreachable; the flow may restart
  TokenRejected          401  the resource server no longer accepts the token
  ResourceUnavailable    502  the resource server could not be reached or answered garbage
"""

from __future__ import annotations


class ClientFlowError(Exception):
    code: str = "client_flow_error"
    status_code: int = 500
    default_message: str = "The authorization flow failed."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class StateMismatch(ClientFlowError):
    code = "state_mismatch"
    status_code = 400
    default_message = "The state returned by the authorization server does not match."


class AuthorizationDenied(ClientFlowError):
    code = "access_denied"
    status_code = 400
    default_message = "The authorization server did not grant access."


class TokenExchangeError(ClientFlowError):
    code = "token_exchange_failed"
    status_code = 502
    default_message = "The authorization server rejected the code exchange."


class TransientExchangeError(ClientFlowError):
    code = "authorization_server_unavailable"
    status_code = 503
    default_message = "The authorization server could not be reached."


class TokenRejected(ClientFlowError):
    code = "invalid_token"
    status_code = 401
    default_message = "The access token was rejected by the resource server."


class ResourceUnavailable(ClientFlowError):
    code = "resource_unavailable"
    status_code = 502
    default_message = "The resource server could not be reached."
