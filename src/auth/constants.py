# Authentication settings per MCP service

AUTH_TYPE_BEARER = "bearer"

SERVICE_NAME_MAP = {
    # FNE certification API: bearer token obtained from the auth service login
    "fne": {"auth_type": AUTH_TYPE_BEARER, "token_field": "access_token"},
}
