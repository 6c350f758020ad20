from __future__ import annotations

from wafscope.core.config import get_settings
from wafscope.core.errors import ProviderConfigError
from wafscope.providers.arm.azure import AzureResourceClientFactory
from wafscope.providers.arm.base import ResourceClientFactory
from wafscope.providers.arm.fake import FakeResourceDirectory


def get_resource_client_factory() -> ResourceClientFactory:
    settings = get_settings()
    provider = (settings.resource_api_provider or "azure").lower()

    if provider == "azure":
        return AzureResourceClientFactory()
    if provider == "fake":
        if not settings.fake_directory_path:
            # An empty directory keeps local runs working without a fixture.
            return FakeResourceDirectory({})
        return FakeResourceDirectory.from_file(settings.fake_directory_path)

    raise ProviderConfigError(f"Unsupported resource API provider: {provider}")
