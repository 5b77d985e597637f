from lightkube.core import resource as lkr
from lightkube.core.exceptions import ApiError

__all__ = [
    'AlreadyExists',
    'ApiError',
    'ApiObjectNotFound',
    'Conflict',
    'Error',
    'FatalError',
    'HttpError',
    'ObjectError',
    'ObjectNotFound',
    'PermanentError',
    'Rejected',
    'StoreKeyError',
    'TemporaryError',
    'ValidationError',
    'iterate_errors',
]


def iterate_errors(exc):
    """
    iterate over all non-exceptiongroup parts of an exception(group)
    """
    if isinstance(exc, BaseExceptionGroup):
        for e in exc.exceptions:
            yield from iterate_errors(e)
    else:
        yield exc


def _describe(api_version, kind, namespace, name):
    out = []
    if api_version is not None and kind is not None:
        out.append(f'{api_version}/{kind}')
    if namespace is not None:
        out.append(f'{namespace}/{name}')
    else:
        out.append(name)
    return ' '.join(out)


class FatalError(Exception):
    """A fatal error that we can not recover from."""


class Error(Exception):
    """Base class for all custom Exceptions."""

    def __init__(self, message=None):
        self.message = message

    def __str__(self):
        return self.__repr__()

    def __repr__(self):
        return f'{self.__class__.__name__}: {self.message}'


class HttpError(Error):
    """An error that occured on the transport level while talking to the api.
    """
    def __init__(self, http_method, url, status_code, message=None):
        self.http_method = http_method
        self.url = url
        self.status_code = status_code
        self.message = message

    def __str__(self):
        if self.message:
            return self.message
        else:
            return '{0} to {1} failed with status: {2}'.format(
                self.http_method, self.url, self.status_code
            )


class ObjectError(Error):
    def __init__(self, obj, message=None):
        self.obj = obj
        self.message = message

    def __repr__(self):
        obj = self.obj
        kind = getattr(obj, 'kind', None)
        api_version = getattr(obj, 'apiVersion', None)
        namespace = getattr(obj.metadata, 'namespace', None)
        msg = _describe(api_version, kind, namespace, obj.metadata.name)
        if self.message:
            msg = f'{msg}: {self.message}'
        return f'{self.__class__.__name__}: {msg}'


class ObjectNotFound(ObjectError):
    pass


class ApiObjectNotFound(ObjectNotFound):
    def __init__(self, resource, name, namespace=None):
        self.resource = resource
        self.name = name
        self.namespace = namespace
        self.message = None

    def __repr__(self):
        info = lkr.api_info(self.resource)
        msg = _describe(
            info.resource.api_version,
            info.resource.kind,
            self.namespace,
            self.name,
        )
        return f'{self.__class__.__name__}: {msg}'


class AlreadyExists(ObjectError):
    """The api server refused to create an object because it already exists."""


class Conflict(ObjectError):
    """The api server refused to update an object because the resourceVersion
    we sent is outdated."""


class StoreKeyError(ObjectError):
    pass


class TemporaryError(Error):
    """Raised by a handler when a recoverable error occurs.
    The event will be retried after the given delay."""

    def __init__(self, message=None, delay=10):
        super().__init__(message)
        self.delay = delay

    def __repr__(self):
        return f'{self.__class__.__name__}: {self.message} delay: {self.delay}'


class PermanentError(Error):
    """Raised by a handler when a non-recoverably error occurs."""


class ValidationError(PermanentError):
    """A service group definition is not well-formed.
    `key` names the offending field."""

    def __init__(self, key, message=None):
        self.key = key
        self.message = message

    def __repr__(self):
        return f'{self.__class__.__name__}: {self.key}: {self.message}'


class Rejected(PermanentError):
    """The api server refused a request, sending it again won't help.
    Bad requests, validation failures and missing permissions end up here."""

    def __init__(self, status_code, message=None):
        self.status_code = status_code
        self.message = message

    def __repr__(self):
        return f'{self.__class__.__name__}: {self.status_code}: {self.message}'
