class HelporaError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class LifecycleError(HelporaError):
    pass


class EscrowError(HelporaError):
    pass


class AuthorizationError(HelporaError):
    status_code = 403


class PaymentGatewayError(HelporaError):
    status_code = 500
