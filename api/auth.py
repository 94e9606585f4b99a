# api/auth.py
import hmac
from functools import wraps
from flask import request, abort

from config import settings


def require_api_key(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        provided = request.headers.get('x-api-key')
        # Read at request time so a key rotated in settings takes effect without a restart
        expected = settings.API_KEY
        if provided and expected and hmac.compare_digest(provided, expected):
            return f(*args, **kwargs)
        abort(401)
    return decorated_function
