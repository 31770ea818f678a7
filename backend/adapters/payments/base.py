"""Provider-neutral results returned by payment adapters."""

from dataclasses import dataclass


@dataclass
class CheckoutSession:
    """A hosted checkout the user is redirected to."""

    id: str
    url: str


@dataclass
class PortalSession:
    """A hosted self-service billing portal link."""

    url: str
