import logging

from ..cache import Informer
from ..controller import Controller


log = logging.getLogger(__name__)


class Builder:
    """A Builder is used to collect information at import time
    that is later used to create actual instances at runtime.
    """

    def __init__(self, manager, resource, name=None) -> None:
        self.manager = manager
        self.resource = resource
        self.name = name
        self._kwargs = {}
        self._instances = []

    def __repr__(self):
        info = self.resource._api_info.resource
        return f'<{self.__class__.__name__} {info.api_version}/{info.kind}>'

    def _register(self, key, func=None, /):
        def decorator(f):
            existing = self._kwargs.get(key, None)
            if callable(existing):
                raise ValueError(
                    f'{self!r} already has a {key} function registered: {existing}'
                )
            self._kwargs[key] = f
            return f

        if func is None:
            # We're called as @decorator() with parens.
            return decorator
        else:
            # We're called as @decorator without parens.
            return decorator(func)


class ControllerBuilder(Builder):
    def __init__(self, manager, resource, name=None) -> None:
        super().__init__(manager, resource, name=name)
        self._kwargs = {
            'name': name,
            'key': None,
            'predicates': [],
            'on_create': None,
            'on_update': None,
            'on_delete': None,
        }

    def key(self, func=None, /):
        """Decorator that registers the function mapping events to requests.
        Events mapped to the same request are processed in order, one
        after the other. Events mapped to None are ignored.
        """
        return self._register('key', func)

    def predicate(self, func=None, /):
        """Decorator that registers a predicate function with this controller.
        All registered predicates must return True for an event to be
        handled.
        """

        def decorator(f):
            self._kwargs['predicates'].append(f)
            return f

        if func is None:
            return decorator
        else:
            return decorator(func)

    def on_create(self, func=None, /):
        """Decorator that registers the handler for CreateEvents."""
        return self._register('on_create', func)

    def on_update(self, func=None, /):
        """Decorator that registers the handler for UpdateEvents."""
        return self._register('on_update', func)

    def on_delete(self, func=None, /):
        """Decorator that registers the handler for DeleteEvents."""
        return self._register('on_delete', func)

    def build(self, client, **kwargs):
        controller = Controller(client, self.resource, **self._kwargs, **kwargs)
        self._instances.append(controller)
        return controller


class InformerBuilder(Builder):
    def __init__(self, manager, resource, name=None, labels=None) -> None:
        super().__init__(manager, resource, name=name)
        self._kwargs = {
            'labels': labels,
            'transformer': None,
        }

    def transform(self, func=None, /):
        """Decorator that registers a transformer function with this informer.
        Every object is passed through it before it is stored and sent.
        """
        return self._register('transformer', func)

    def build(self, api_client, namespace=None, **kwargs):
        informer = Informer(
            api_client,
            self.resource,
            namespace=namespace,
            **self._kwargs,
            **kwargs,
        )
        self._instances.append(informer)
        return informer
