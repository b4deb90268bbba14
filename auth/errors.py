"""
auth/errors.py -- Authentication and authorization failure taxonomy.

Every failure carries a machine-readable code and the HTTP status the caller
should see. None of these are retried server-side; the route layer renders
them and the request ends.

  InvalidClient           401  unknown client id or bad secret
  InvalidRedirect         400  redirect URI not in the client's allow-list
  InvalidGrant            400  code unknown / expired / redeemed / mismatched
  Unauthenticated         401  no credential presented
  InvalidToken            401  bearer token unknown or expired
  InvalidRequest          400  malformed OAuth request
  UnsupportedGrantType    400  grant_type other than authorization_code
  UnsupportedResponseType 400  response_type other than code
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidClient(AuthError):
    code = "invalid_client"
    status_code = 401
    default_message = "Client authentication failed."


class InvalidRedirect(AuthError):
    code = "invalid_redirect"
    status_code = 400
    default_message = "Redirect URI is not registered for this client."


class InvalidGrant(AuthError):
    code = "invalid_grant"
    status_code = 400
    default_message = "Authorization code is invalid."


class Unauthenticated(AuthError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required."


class InvalidToken(AuthError):
    code = "invalid_token"
    status_code = 401
    default_message = "Access token is invalid or expired."


class InvalidRequest(AuthError):
    code = "invalid_request"
    status_code = 400
    default_message = "The request is missing a required parameter."


class UnsupportedGrantType(AuthError):
    code = "unsupported_grant_type"
    status_code = 400
    default_message = "Only the authorization_code grant is supported."


class UnsupportedResponseType(AuthError):
    code = "unsupported_response_type"
    status_code = 400
    default_message = "Only response_type=code is supported."
