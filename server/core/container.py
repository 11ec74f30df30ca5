"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from services.relay import DeviceRelay, build_channel_factory
from services.status_broadcaster import StatusBroadcaster


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Connected sessions + device status
    status_broadcaster = providers.Singleton(
        StatusBroadcaster,
        novnc_port=settings.provided.novnc_port
    )

    # Loads the emulator controller proto on first use (fatal if missing)
    channel_factory = providers.Singleton(
        build_channel_factory,
        settings=settings
    )

    relay = providers.Singleton(
        DeviceRelay,
        settings=settings,
        broadcaster=status_broadcaster,
        channel_factory=channel_factory
    )


# Global container instance
container = Container()
