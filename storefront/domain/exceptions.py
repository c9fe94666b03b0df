class DomainException(Exception):
    pass


class ValidationError(DomainException):
    pass


class MissingFieldError(ValidationError):
    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Missing required fields: {', '.join(fields)}")


class MissingOrderIdError(ValidationError):
    def __init__(self):
        super().__init__("Order ID is required")


class TotalMismatchError(ValidationError):
    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Сумма заказа {actual} не совпадает с суммой позиций {expected}")


class ConfigurationError(DomainException):
    pass


class AuthenticationError(DomainException):
    pass


class SignatureMismatchError(AuthenticationError):
    def __init__(self):
        super().__init__("Invalid signature")


class NotFoundError(DomainException):
    pass


class OrderNotFoundError(NotFoundError):
    pass


class PersistenceError(DomainException):
    pass


class NotificationError(DomainException):
    pass


class PendingOrderConsumedError(ValidationError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Заказ {order_id} уже оформлен")


class ConcurrentUpdateError(PersistenceError):
    pass
