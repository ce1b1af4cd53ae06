"""
Utilities for fingerprinting the configuration of a service.
"""
import hashlib
import json

from ..MODELS.service_definition import NON_IDENTITY_FIELDS, ServiceDefinition


def config_hash(service: ServiceDefinition) -> str:
    """
    Stable hash over every field that shapes the containers of a service.

    Replica count, dependency ordering, build settings and `x-` extensions
    are left out: changing them must not recreate running containers.

    :param service: The service definition.
    :return: Hex encoded SHA-256 digest.
    """
    payload = service.model_dump(mode="json", exclude=NON_IDENTITY_FIELDS)
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
