"""
Provider interfaces, summarization prompts and the provider registry.

Providers are matched structurally against the Protocols below; concrete
classes in embeddings.py and llm.py do not inherit from them.
"""

import re
from typing import Protocol, runtime_checkable

# Per-request limit handed to the SDK or HTTP client, in seconds
PROVIDER_TIMEOUT = 60.0


# -----------------------------------------------------------------------------
# Embeddings
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Turns recipe text into a fixed-length vector.

    Recipes and queries must be embedded by the same provider; stored
    vectors of another dimension are ignored by search.
    """

    @property
    def dimension(self) -> int:
        ...

    def embed(self, text: str) -> list[float]:
        ...


# -----------------------------------------------------------------------------
# Summaries
# -----------------------------------------------------------------------------

SUMMARIZATION_SYSTEM_PROMPT = """You are an AI assistant that creates concise summaries of code development recipes/tutorials and code documentation. Your summaries should:

1. Be 5 paragraphs maximum
2. It should be written in markdown format
3. Should be written in the same language, tone and style as the original content
4. Focus on the main purpose and key outcome
5. Mention the primary technology/framework if relevant
6. Be written so that it has all keywords and phrases that would be used to search for this recipe
7. Avoid implementation details - focus on the "what" and "why"

Keep the summary professional and actionable."""

SUMMARIZATION_USER_PROMPT = """Please summarize this development recipe:

Title: {title}

Content:
{content}"""


def build_summarization_prompt(title: str, content: str) -> str:
    """Fill the user prompt template with a recipe's title and content."""
    return SUMMARIZATION_USER_PROMPT.format(title=title, content=content)


_PREAMBLE = re.compile(
    r"^(?:"
    r"here(?: is|'s) (?:a|the)(?: concise| short| brief)? summary[^:\n]*[:.]"
    r"|summary:"
    r"|(?:this|the) (?:recipe|document) describes"
    r")\s*",
    re.IGNORECASE,
)


def strip_summary_preamble(text: str) -> str:
    """Drop a leading "Here is a summary..." style line that models add anyway."""
    return _PREAMBLE.sub("", text.strip(), count=1)


@runtime_checkable
class SummarizationProvider(Protocol):
    """
    Generates a markdown summary of a recipe.

    Summaries are stored on the version and shown next to search hits.
    """

    def summarize(self, title: str, content: str) -> str:
        """
        Generate a summary of the recipe.

        Args:
            title: Version title
            content: Full markdown content

        Returns:
            Summary text with any preamble stripped
        """
        ...


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

EMBEDDING = "embedding"
SUMMARIZATION = "summarization"


class ProviderRegistry:
    """
    Name -> class table for each provider kind.

    kitchen.toml names a provider ("openai", "ollama", ...) and the
    pipeline asks the registry to build it with the configured params.
    Built-in providers are registered the first time the table is read,
    so importing this module never pulls in an SDK.
    """

    def __init__(self):
        self._classes: dict[str, dict[str, type]] = {EMBEDDING: {}, SUMMARIZATION: {}}
        self._builtins_imported = False

    def _load_builtins(self) -> None:
        if self._builtins_imported:
            return
        self._builtins_imported = True
        # Registration happens at import time of these modules
        from . import embeddings, llm  # noqa: F401

    def register(self, kind: str, name: str, provider_class: type) -> None:
        self._classes[kind][name] = provider_class

    def unregister(self, kind: str, name: str) -> None:
        self._classes[kind].pop(name, None)

    def names(self, kind: str) -> list[str]:
        self._load_builtins()
        return sorted(self._classes[kind])

    def create(self, kind: str, name: str, params: dict | None = None):
        """
        Instantiate the provider registered as `name`.

        Raises ValueError for an unknown name or bad credentials, and
        RuntimeError when the provider's client library is missing.
        """
        self._load_builtins()
        provider_class = self._classes[kind].get(name)
        if provider_class is None:
            known = ", ".join(self.names(kind)) or "none"
            raise ValueError(f"Unknown {kind} provider: '{name}' (known: {known})")
        try:
            return provider_class(**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"{kind} provider '{name}' needs a package that is not installed: {e}"
            ) from e

    # Per-kind shorthands used by the provider modules and the pipeline

    def register_embedding(self, name: str, provider_class: type) -> None:
        self.register(EMBEDDING, name, provider_class)

    def register_summarization(self, name: str, provider_class: type) -> None:
        self.register(SUMMARIZATION, name, provider_class)

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        return self.create(EMBEDDING, name, params)

    def create_summarization(self, name: str, params: dict | None = None) -> SummarizationProvider:
        return self.create(SUMMARIZATION, name, params)


_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    return _registry
