"""
Instance addressing. In docker-compose these are service names
(http://instance-3:3000), locally everything is localhost.
"""
from urllib.parse import urlencode


def instance_url(instance_id, settings):
    """Base URL of an instance. Says nothing about whether it's up."""
    if instance_id == 0 and settings.zero_is_unsuffixed:
        suffix = ""
    else:
        suffix = f"-{instance_id}"
    return f"{settings.base_url}{suffix}:{settings.instance_port}"


def chain_url(instance_id, sequence, trace_id, settings):
    query = urlencode({"seq": sequence, "traceId": trace_id})
    return f"{instance_url(instance_id, settings)}/chain?{query}"
