import functools
import logging
import signal

import anyio
import uvloop
from anyio import CancelScope, open_signal_receiver

from lightkube import ALL_NS
from lightkube import AsyncClient as LightkubeAsyncClient

from .. import exceptions
from ..client import Client
from ..config import Settings

from .builders import ControllerBuilder, InformerBuilder


log = logging.getLogger(__name__)


async def signal_handler(scope: CancelScope):
    with open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            if signum == signal.SIGINT:
                log.info('Ctrl+C pressed!')
            else:
                log.info('Terminated!')

            scope.cancel()
            return


class Manager:
    """Creates the informers and controllers registered through its
    builders and runs them.

    Every watched resource gets one informer per watched namespace. The
    controllers of a resource receive the events of all its informers.
    """

    def __init__(self, settings=None, api_client=None):
        self.settings = settings or Settings()
        self.debug = False
        self._api_client = api_client
        self._builders = {
            'controller': {},
            'informer': {},
        }
        self._controllers = []
        self._informers = []
        self._task_group = None

    def __repr__(self):
        resources = {
            '%s/%s' % (b.resource._api_info.resource.api_version, b.resource._api_info.resource.kind)
            for b in self._builders['informer'].values()
        }
        return f'<Manager namespaces: {self.settings.namespaces} resources: {resources}>'

    @property
    def api_client(self):
        # Created lazily, it needs a kubeconfig or in-cluster config.
        if self._api_client is None:
            self._api_client = LightkubeAsyncClient()
        return self._api_client

    @property
    def namespaces(self):
        """The namespaces to watch."""
        if self.settings.all_namespaces:
            return [ALL_NS]
        if self.settings.namespaces:
            return list(dict.fromkeys(self.settings.namespaces))
        return [self.api_client.namespace]

    @property
    def controllers(self):
        return list(self._controllers)

    @property
    def informers(self):
        return list(self._informers)

    def controller(self, resource, name=None):
        """Create and return a controller builder."""
        _builders = self._builders['controller']
        key = name if name is not None else resource
        builder = _builders.get(key, None)
        if builder is None:
            # Ensure the controller gets events.
            self.informer(resource)
            builder = ControllerBuilder(self, resource, name=name)
            _builders[key] = builder
        return builder

    def informer(self, resource, labels=None):
        """Create and return the informer builder for the given resource."""
        _builders = self._builders['informer']
        builder = _builders.get(resource, None)
        if builder is None:
            builder = InformerBuilder(self, resource, labels=labels)
            _builders[resource] = builder
        elif labels is not None:
            builder._kwargs['labels'] = labels
        return builder

    def setup(self):
        """Create informers and controllers and connect them."""
        client = Client(self.api_client)
        for builder in self._builders['informer'].values():
            for namespace in self.namespaces:
                log.debug('creating informer from %r for %s', builder, namespace)
                self._informers.append(builder.build(
                    self.api_client,
                    namespace=namespace,
                    resync_after=self.settings.resync_period,
                ))

        for builder in self._builders['controller'].values():
            log.debug('creating controller from %r', builder)
            controller = builder.build(
                client,
                concurrency=self.settings.concurrency,
                max_retries=self.settings.max_retries,
            )
            self._controllers.append(controller)
            for informer in self._informers:
                if informer.resource is controller.resource:
                    informer.add_stream(controller.source.stream, key=controller)

    def run(self, debug=False):
        self.debug = debug
        anyio.run(
            functools.partial(self, setup_signal_handler=True),
            backend_options={'loop_factory': uvloop.new_event_loop},
        )

    def stop(self):
        log.debug('stop %r', self)
        if self._task_group:
            self._task_group.cancel_scope.cancel()

    async def __call__(self, setup_signal_handler=False):
        self.setup()
        log.debug('startup %s', self)

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                if setup_signal_handler:
                    tg.start_soon(signal_handler, tg.cancel_scope)

                # Controllers first, so they listen before the first
                # event is sent.
                for controller in self._controllers:
                    await tg.start(controller)

                for informer in self._informers:
                    tg.start_soon(informer)

                log.info('started %s', self)
        except* exceptions.Error as eg:
            if self.debug:
                raise eg
            error_messages = []
            for error in exceptions.iterate_errors(eg):
                error_messages.append(str(error))
            raise exceptions.FatalError(' '.join(error_messages)) from eg

        log.debug('exiting %s', self)
