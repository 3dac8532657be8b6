"""Shared rate limiter; bound to the app in create_app"""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from pricemap.config.settings import settings

limiter = Limiter(key_func=get_remote_address)

def price_submission_limit() -> str:
    return f"{settings.PRICE_SUBMISSIONS_PER_MINUTE} per minute"
