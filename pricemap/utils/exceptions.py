"""Custom exceptions for the price map service"""

class PriceMapException(Exception):
    """Base exception for the price map service"""
    status_code = 400

class ValidationError(PriceMapException):
    """Raised when input validation fails"""
    pass

class InvalidPrice(ValidationError):
    """Raised when a submitted price is not a positive, finite number"""
    pass

class InvalidCoordinate(ValidationError):
    """Raised when a latitude/longitude pair is out of range or not numeric"""
    pass

class InvalidViewport(ValidationError):
    """Raised when a bounding box cannot be queried"""
    pass

class InvalidIdentity(ValidationError):
    """Raised when a point identity key cannot be parsed"""
    pass

class GatewayError(PriceMapException):
    """Base for POI feed failures"""
    status_code = 502

class GatewayUnavailable(GatewayError):
    """Raised on network failure, timeout or non-success status from the POI feed"""
    pass

class GatewayParseError(GatewayError):
    """Raised when the POI feed returns a body we cannot interpret"""
    pass

class AnnotationStoreError(PriceMapException):
    """Raised when the annotation store backend fails"""
    status_code = 502

class ReconcileCancelled(PriceMapException):
    """Raised when a caller abandons a viewport query in progress"""
    status_code = 503

class ConfigurationError(PriceMapException):
    """Raised when configuration is invalid"""
    status_code = 500
