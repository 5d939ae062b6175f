from rest_framework.authentication import TokenAuthentication


class BearerTokenAuthentication(TokenAuthentication):
    """Authorization: Bearer <token>"""
    keyword = "Bearer"
