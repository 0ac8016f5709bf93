import pytest

from scene_studio.models import LLMProvider, LLMServiceConfig
from scene_studio.openrouter_service import OpenRouterService


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_BASE_URL", raising=False)
    monkeypatch.delenv("OPENROUTER_SITE_URL", raising=False)
    monkeypatch.delenv("OPENROUTER_SITE_NAME", raising=False)
    monkeypatch.delenv("OPENROUTER_PROXY", raising=False)
    monkeypatch.setenv("SCENE_STUDIO_HOME", str(tmp_path / "home"))


@pytest.fixture
def config():
    return LLMServiceConfig(api_key="sk-test")


@pytest.fixture
def make_service(config):
    def factory(transport, provider=LLMProvider.NANO_BANANA_PRO, service_config=None):
        return OpenRouterService(service_config or config, provider, transport=transport)
    return factory
