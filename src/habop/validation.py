import re

from .exceptions import ValidationError
from .models import TOPOLOGIES

__all__ = [
    'validate_service_group',
]


# RFC 1123 subdomain, as used for most kubernetes object names.
_DNS_SUBDOMAIN = re.compile(
    r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$'
)
_DNS_SUBDOMAIN_MAX_LENGTH = 253
# The name is also the value of the group label on every pod.
_LABEL_VALUE_MAX_LENGTH = 63


def _is_dns_subdomain(value):
    return (
        isinstance(value, str)
        and len(value) <= _DNS_SUBDOMAIN_MAX_LENGTH
        and _DNS_SUBDOMAIN.match(value) is not None
    )


def _is_blank(value):
    return not isinstance(value, str) or not value.strip()


def validate_service_group(sg):
    """Check that the given ServiceGroup is well-formed.

    Raises a ValidationError naming the first offending field.
    Does not talk to the api server.
    """
    name = sg.metadata.name
    if _is_blank(name):
        raise ValidationError('metadata.name', 'must not be empty')
    if not _is_dns_subdomain(name):
        raise ValidationError(
            'metadata.name', f'{name!r} is not a valid DNS-1123 subdomain'
        )
    if len(name) > _LABEL_VALUE_MAX_LENGTH:
        raise ValidationError(
            'metadata.name',
            f'must be at most {_LABEL_VALUE_MAX_LENGTH} characters, got {len(name)}',
        )

    spec = sg.spec
    count = spec.count
    # bool is an int, but never a replica count.
    if not isinstance(count, int) or isinstance(count, bool) or count < 1:
        raise ValidationError('spec.count', f'must be a positive integer, got {count!r}')

    if _is_blank(spec.image):
        raise ValidationError('spec.image', 'must not be empty')

    if spec.group is not None and _is_blank(spec.group):
        raise ValidationError('spec.service.group', 'must not be empty when given')

    if spec.topology is not None and spec.topology not in TOPOLOGIES:
        raise ValidationError(
            'spec.service.topology',
            f'must be one of {", ".join(TOPOLOGIES)}, got {spec.topology!r}',
        )

    if spec.config_secret_name is not None and not _is_dns_subdomain(
        spec.config_secret_name
    ):
        raise ValidationError(
            'spec.service.configSecretName',
            f'{spec.config_secret_name!r} is not a valid secret name',
        )

    for idx, bind in enumerate(spec.binds):
        for field in ('name', 'service', 'group'):
            if _is_blank(getattr(bind, field)):
                raise ValidationError(
                    f'spec.service.bind[{idx}].{field}', 'must not be empty'
                )
