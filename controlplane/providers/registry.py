"""Provider registry: closed dispatch from provider name to adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING

from controlplane.providers.base import Provider
from controlplane.providers.box import BoxAdapter
from controlplane.providers.github import GitHubAdapter
from controlplane.providers.google_drive import GoogleDriveAdapter
from controlplane.providers.onedrive import OneDriveAdapter

if TYPE_CHECKING:
    import httpx

    from controlplane.config import Settings
    from controlplane.providers.base import ProviderAdapter

ADAPTERS: dict[
    Provider,
    type[GoogleDriveAdapter] | type[GitHubAdapter] | type[BoxAdapter] | type[OneDriveAdapter],
] = {
    Provider.GOOGLE_DRIVE: GoogleDriveAdapter,
    Provider.GITHUB: GitHubAdapter,
    Provider.BOX: BoxAdapter,
    Provider.ONEDRIVE: OneDriveAdapter,
}


def parse_provider(name: str) -> Provider:
    """Validate an untrusted provider name against the closed enumeration.

    Raises ValueError for unknown names.
    """
    try:
        return Provider(name)
    except ValueError:
        msg = f"Unknown provider: {name!r}. Available: {list_providers()}"
        raise ValueError(msg) from None


def _base_url_for(provider: Provider, settings: Settings) -> str:
    return {
        Provider.GOOGLE_DRIVE: settings.google_drive_api_url,
        Provider.GITHUB: settings.github_api_url,
        Provider.BOX: settings.box_api_url,
        Provider.ONEDRIVE: settings.onedrive_api_url,
    }[provider]


def create_adapter(
    provider: Provider,
    client: httpx.AsyncClient,
    access_token: str,
    settings: Settings,
) -> ProviderAdapter:
    """Create the adapter for ``provider`` bound to an HTTP client and token."""
    adapter_cls = ADAPTERS[provider]
    return adapter_cls(client, access_token, base_url=_base_url_for(provider, settings))


def list_providers() -> list[str]:
    """Return the list of supported provider names."""
    return [provider.value for provider in ADAPTERS]
