import dataclasses


class Event:
    """Base of the events delivered by informers.

    An event is exactly one of CreateEvent, UpdateEvent or DeleteEvent.
    `obj` is always the most recent state of the object.
    """

    def __init_subclass__(cls, **kwargs):
        """Make subclasses available in the class namespace.
        Allows to use patterns like the following without having
        to import all the event classes.

        ```
        match type(event):
            case event.CreateEvent:
                pass
            case event.UpdateEvent:
                pass
        ```
        """
        setattr(Event, cls.__name__, cls)

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.obj!r}>'


@dataclasses.dataclass(repr=False)
class CreateEvent(Event):
    obj: object


@dataclasses.dataclass(repr=False)
class UpdateEvent(Event):
    old: object
    new: object

    @property
    def obj(self):
        return self.new

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.old!r} {self.new!r}>'


@dataclasses.dataclass(repr=False)
class DeleteEvent(Event):
    obj: object
