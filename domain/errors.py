from datetime import date


class DinnerError(Exception):
    status_code = 400


class InvalidRequest(DinnerError):
    status_code = 422


class NotAuthorized(DinnerError):
    status_code = 403


class ConfirmationRequired(DinnerError):
    """Raised when a suspended weekday is about to get its first entry."""

    status_code = 409

    def __init__(self, on: date) -> None:
        self.date = on
        super().__init__(
            f"There is no cooking scheduled for {on:%A}. "
            "Are you sure you want to continue?"
        )


class StoreError(DinnerError):
    status_code = 503
