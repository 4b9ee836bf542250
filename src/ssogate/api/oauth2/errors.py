# OAuth2 error taxonomy.
# Created: 2026-10-19
#
# Grant handlers return on success, raise a Denied subclass on a protocol
# denial, and raise StoreFailure when a backend call fails. The router maps
# Denied to an RFC 6749 error body (4xx) and StoreFailure to a 5xx.

from __future__ import annotations


class OAuth2Error(Exception):
    """Base class for every error the OAuth2 core raises."""

    error = "server_error"
    description = "The authorization server encountered an unexpected condition."
    status_code = 500

    def __init__(self, description: str | None = None):
        if description is not None:
            self.description = description
        super().__init__(self.description)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class StoreFailure(OAuth2Error):
    """Artifact store or client registry backend failed."""


class Denied(OAuth2Error):
    """The request is well-formed but may not be granted."""

    error = "invalid_grant"
    description = "The provided authorization grant is invalid."
    status_code = 400


class InvalidRequest(Denied):
    error = "invalid_request"
    description = "The request is missing a required parameter."


class UnknownClient(Denied):
    error = "invalid_client"
    description = "Unknown client."
    status_code = 403


class InvalidClientCredentials(Denied):
    error = "invalid_client"
    description = "Client authentication failed."
    status_code = 401


class InvalidRedirectUri(Denied):
    error = "invalid_request"
    description = "The redirect_uri is not registered for this client."
    status_code = 403


class UnknownCode(Denied):
    description = "Invalid or expired authorization code."


class ReplayDetected(UnknownCode):
    """The code was redeemed by a concurrent request.

    Shares the wire representation of UnknownCode so callers cannot tell a
    replayed code from one that never existed.
    """


class UnknownRefreshToken(Denied):
    description = "Invalid refresh token."


class UnknownAccessToken(Denied):
    error = "invalid_token"
    description = "Invalid or expired access token."


class InvalidCredentials(Denied):
    description = "Invalid resource owner credentials."


class UnsupportedGrantType(Denied):
    error = "unsupported_grant_type"
    description = "The authorization grant type is not supported."


class UnsupportedResponseType(Denied):
    error = "unsupported_response_type"
    description = "The response type is not supported."
    status_code = 501


class AccessDenied(Denied):
    error = "access_denied"
    description = "The resource owner denied the request."
    status_code = 403
