"""
Failure types raised by the desk services.

Each carries the HTTP status the API layer answers with; `main.py` turns
them into `{"detail": message}` responses.
"""


class DeskError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(DeskError):
    status_code = 400
    default_message = "Please share all details"


class NotAuthenticated(DeskError):
    status_code = 401
    default_message = "Invalid credentials"


class NoAdminConfigured(DeskError):
    status_code = 401
    default_message = "No Admin found, Contact support!"


class Forbidden(DeskError):
    status_code = 403
    default_message = "Not allowed"


class NotFound(DeskError):
    status_code = 404
    default_message = "Not found"


class Conflict(DeskError):
    status_code = 409
    default_message = "Already exists"


class SessionExpired(DeskError):
    # Non-standard status the dashboard treats as "log out now"
    status_code = 440
    default_message = "Session expired, please log in again"
