"""
Bearer credential verification.

Tokens are issued by the identity service and signed with the shared
``SECRET_KEY``; this module only resolves them into a ``Principal``.
"""
from collections import namedtuple
from functools import wraps

import itsdangerous
from flask import current_app, g, request

import errors

Principal = namedtuple('Principal', ['user_id', 'role', 'name'])

ROLES = ('buyer', 'artist')
_SALT = 'artmarket-bearer'


def _serializer():
    return itsdangerous.URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=_SALT)


def issue_token(user):
    return _serializer().dumps({'uid': user.id, 'role': user.role, 'name': user.name})


def verify_token(token):
    if not token:
        raise errors.UnauthorizedError("Missing credentials")
    try:
        data = _serializer().loads(token, max_age=current_app.config['TOKEN_MAX_AGE'])
    except itsdangerous.BadData:
        raise errors.UnauthorizedError("Invalid or expired credentials")
    if data.get('role') not in ROLES or not isinstance(data.get('uid'), int):
        raise errors.UnauthorizedError("Malformed credentials")
    return Principal(data['uid'], data['role'], data.get('name') or 'Anonymous')


def bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def current_principal():
    return g.principal


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.principal = verify_token(bearer_token())
        return f(*args, **kwargs)
    return decorated_function


def role_required(role, message=None):
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if g.principal.role != role:
                raise errors.ForbiddenError(message or f"Only {role}s can do this")
            return f(*args, **kwargs)
        return decorated_function
    return decorator
