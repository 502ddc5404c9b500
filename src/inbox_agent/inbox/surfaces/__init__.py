"""Messaging and artifact surfaces the inbox core talks to."""

from inbox_agent.inbox.surfaces.artifacts import (
    ArtifactSurface,
    NullArtifactSurface,
    OutputDirArtifactSurface,
)
from inbox_agent.inbox.surfaces.messaging import (
    ConsoleMessagingSurface,
    DeliveryError,
    LoggingMessagingSurface,
    MessagingSurface,
    StatusSignal,
    WebhookMessagingSurface,
)

__all__ = [
    "ArtifactSurface",
    "ConsoleMessagingSurface",
    "DeliveryError",
    "LoggingMessagingSurface",
    "MessagingSurface",
    "NullArtifactSurface",
    "OutputDirArtifactSurface",
    "StatusSignal",
    "WebhookMessagingSurface",
]
