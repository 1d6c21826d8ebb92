class UpnpClientException(Exception):
    pass


class DiscoveryError(UpnpClientException):
    """Service descriptions could not be loaded from the router."""


class ServiceNotFound(UpnpClientException):

    def __init__(self, service: str):
        super().__init__(f"Cannot find defined service {service}")
        self.service = service


class ActionNotFound(UpnpClientException):

    def __init__(self, service: str, action: str):
        super().__init__(f"Cannot find defined action {action} on service {service}")
        self.service = service
        self.action = action


class InvocationError(UpnpClientException):
    """Calling a remote action failed (transport, HTTP status or SOAP fault)."""
