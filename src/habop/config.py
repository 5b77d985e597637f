import dataclasses
import typing

__all__ = [
    'DEFAULT_GROUP',
    'Settings',
]


DEFAULT_GROUP = 'default'


@dataclasses.dataclass
class Settings:
    """Runtime configuration of the operator.
    Populated from the command line, see `habop.cli`."""

    # Namespaces to watch. Empty means the namespace of the api client.
    namespaces: typing.List[str] = dataclasses.field(default_factory=list)
    all_namespaces: bool = False
    # Seconds between full relists of the watched objects.
    resync_period: float = 60
    # Number of workers per controller.
    concurrency: int = 1
    # Give up on an event after that many failed attempts.
    max_retries: int = 5
    # Write an empty leader address when the last running pod of a group
    # goes away instead of leaving the stale address in place.
    clear_leader_when_empty: bool = True
    # Peer group used when a service group does not name one.
    default_group: str = DEFAULT_GROUP
