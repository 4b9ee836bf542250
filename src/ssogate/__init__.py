"""ssogate: an OAuth2 authorization server for single sign-on."""
