class TallyError(Exception):
    """Base class for every failure the engine reports to its caller.

    status_code mirrors the HTTP status the surrounding API layer should answer
    with, so a route can translate any TallyError into a response in one place.
    """

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(TallyError):
    status_code = 400


class AuthorizationError(TallyError):
    status_code = 403


class NotFoundError(TallyError):
    status_code = 404


class StateConflictError(TallyError):
    status_code = 409


class ConsistencyError(TallyError):
    status_code = 422


class ComputationError(TallyError):
    status_code = 500
