from pydantic import BaseModel
from pydantic_settings import BaseSettings

from mentor.errors import ConfigurationError


class ProviderConfig(BaseModel):
    """One configured language-model provider profile."""

    name: str
    provider_type: str = "openai"  # openai | openrouter | perplexity | local | anthropic
    api_key: str = ""
    model: str = ""
    base_url: str = ""
    timeout: int = 60
    streaming: bool = True
    retrieval_augmented_generation: bool = False
    server_side_search: bool = False


class Settings(BaseSettings):
    # Provider profiles: JSON mapping of name -> ProviderConfig fields
    providers: dict[str, ProviderConfig] = {}
    default_provider: str = "default"

    # Single-provider shorthand, used when `providers` is empty
    provider_name: str = "default"
    provider_type: str = "openai"
    provider_api_key: str = ""
    provider_model: str = "gpt-4o-mini"
    provider_base_url: str = ""
    provider_timeout: int = 60
    provider_streaming: bool = True
    retrieval_augmented_generation: bool = False
    server_side_search: bool = False

    # Model call
    max_output_tokens: int = 8000
    temperature: float = 0.7
    max_tool_rounds: int = 8

    # Search provider
    search_provider: str = "tavily"  # brave | tavily
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_timeout: float = 30.0
    search_min_interval: float = 1.0  # seconds between requests per API key

    # Research
    research_max_results: int = 10
    research_mode: str = "summary_only"  # summary_only | full_article
    article_timeout: float = 30.0
    article_max_chars: int = 20000
    tool_search_max_results: int = 10

    # Domain rules
    rules_dir: str = "rules"

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def provider_profiles(self) -> dict[str, ProviderConfig]:
        if self.providers:
            return {name: cfg for name, cfg in self.providers.items()}
        return {
            self.provider_name: ProviderConfig(
                name=self.provider_name,
                provider_type=self.provider_type,
                api_key=self.provider_api_key,
                model=self.provider_model,
                base_url=self.provider_base_url,
                timeout=self.provider_timeout,
                streaming=self.provider_streaming,
                retrieval_augmented_generation=self.retrieval_augmented_generation,
                server_side_search=self.server_side_search,
            )
        }

    def get_provider(self, name: str | None = None) -> ProviderConfig:
        """Resolve a provider profile by name, falling back to the default one."""
        profiles = self.provider_profiles()
        wanted = (name or "").strip()
        if wanted:
            if wanted not in profiles:
                raise ConfigurationError(f"Unknown provider profile: {wanted}")
            return profiles[wanted]
        if self.default_provider in profiles:
            return profiles[self.default_provider]
        return next(iter(profiles.values()))


settings = Settings()
