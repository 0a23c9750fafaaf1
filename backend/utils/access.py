from functools import wraps
from flask_login import current_user
from backend.utils.errors import PaymentRequired, Unauthorized

def subscription_required(view):
    """Reject users without a current subscription (use under login_required)"""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            raise Unauthorized()
        if not current_user.has_active_subscription():
            raise PaymentRequired()
        return view(*args, **kwargs)
    return wrapped
