from .request import (
    Request,
    request_for_object,
)

from .controller import (
    Controller,
)

__all__ = [
    'Controller',
    'Request',
    'request_for_object',
]
