"""Error taxonomy for the newsletter backend and the handlers that render it.

Every error leaves the app as the standard envelope
``{"success": false, "error": "..."}``. Validation errors carry a message the
user can act on; authentication failures collapse into a few generic messages
so the response never tells which check failed.
"""

import logging

from werkzeug.exceptions import HTTPException

from .responses import error_response

logger = logging.getLogger(__name__)


class NewsletterError(Exception):
    """Base error rendered by the JSON error handler."""

    status_code = 400
    message = 'Bad request'

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# --- Input validation (user-correctable) ---

class InputValidation(NewsletterError):
    status_code = 400
    message = 'Invalid input'


class InvalidEmailFormat(InputValidation):
    message = 'Invalid email address'


class CodeFormatInvalid(InputValidation):
    message = 'Code must be exactly 6 digits'


# --- Token state: all variants render the same way ---

class TokenExpiredOrInvalid(NewsletterError):
    status_code = 401
    message = 'Invalid or expired token'

    def __init__(self, reason='invalid'):
        # `reason` is only for logs, the client always sees the same message
        self.reason = reason
        super().__init__()


class TokenExpired(TokenExpiredOrInvalid):
    def __init__(self):
        super().__init__('expired')


class TokenNotFound(TokenExpiredOrInvalid):
    def __init__(self):
        super().__init__('not_found')


class TokenConsumed(TokenExpiredOrInvalid):
    def __init__(self):
        super().__init__('consumed')


class CodeMismatch(NewsletterError):
    status_code = 401
    message = 'Verification failed'


# --- Authentication / authorization ---

class Unauthenticated(NewsletterError):
    status_code = 401
    message = 'Unauthorized'


class Forbidden(NewsletterError):
    status_code = 403
    message = 'Forbidden'


class RateLimited(NewsletterError):
    status_code = 429
    message = 'Too many requests. Please try again later.'


class UnknownRole(RuntimeError):
    """A role outside owner/admin/subscriber reached the role mapping."""


def register_error_handlers(app):
    @app.errorhandler(NewsletterError)
    def handle_newsletter_error(err):
        if isinstance(err, TokenExpiredOrInvalid):
            logger.info('Token rejected (%s)', err.reason)
        return error_response(err.message, err.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(err):
        if err.code is not None and err.code < 400:
            # routing redirects (e.g. missing trailing slash)
            return err
        if err.code == 429:
            return error_response(RateLimited.message, 429)
        return error_response(err.name, err.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(err):
        logger.exception('Unhandled error: %s', err)
        return error_response('Internal server error', 500)
