# ssogate HTTP layer.
# Created: 2026-10-19
#
# FastAPI routers and dependencies around the OAuth2 grant engine in
# ssogate.api.oauth2.
