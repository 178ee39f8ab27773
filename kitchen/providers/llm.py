"""
Summarization providers using LLMs.
"""

import os

from .base import (
    PROVIDER_TIMEOUT,
    SUMMARIZATION_SYSTEM_PROMPT,
    build_summarization_prompt,
    get_registry,
    strip_summary_preamble,
)

# Longest content sent to a summarizer, in characters
MAX_SUMMARY_INPUT = 50000


def _user_message(title: str, content: str) -> dict:
    return {"role": "user", "content": build_summarization_prompt(title, content[:MAX_SUMMARY_INPUT])}


def _chat_messages(title: str, content: str) -> list[dict]:
    return [{"role": "system", "content": SUMMARIZATION_SYSTEM_PROMPT}, _user_message(title, content)]


class AnthropicSummarization:
    """Claude summaries. The key comes from `api_key` or ANTHROPIC_API_KEY."""

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 1024,
        timeout: float = PROVIDER_TIMEOUT,
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicSummarization requires 'anthropic' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("Anthropic API key required. Set ANTHROPIC_API_KEY")

        self.client = Anthropic(api_key=key, timeout=timeout)

    def summarize(self, title: str, content: str) -> str:
        # The SDK retries rate limits itself; other errors propagate
        # so the queue item is marked failed
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SUMMARIZATION_SYSTEM_PROMPT,
            messages=[_user_message(title, content)],
        )
        if not response.content:
            raise RuntimeError(f"Anthropic returned an empty summary (model={self.model})")
        return strip_summary_preamble(response.content[0].text)


class OpenAISummarization:
    """Chat-completion summaries. Key from `api_key`, KITCHEN_OPENAI_API_KEY or OPENAI_API_KEY."""

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        max_tokens: int = 1024,
        timeout: float = PROVIDER_TIMEOUT,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAISummarization requires 'openai' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("KITCHEN_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set KITCHEN_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key, timeout=timeout)

        # Reasoning and gpt-5 models reject max_tokens and a custom temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self) -> dict:
        if self._new_api:
            return {"max_completion_tokens": self.max_tokens}
        return {"max_tokens": self.max_tokens, "temperature": 0.3}

    def summarize(self, title: str, content: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=_chat_messages(title, content),
            **self._completion_kwargs(),
        )
        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise RuntimeError(f"OpenAI returned an empty summary (model={self.model})")
        return strip_summary_preamble(text)


class OllamaSummarization:
    """Summaries from a local Ollama server (OLLAMA_HOST, else localhost:11434)."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str | None = None,
        timeout: float = PROVIDER_TIMEOUT,
    ):
        self.model = model
        self.timeout = timeout
        from .ollama_utils import ollama_base_url, ollama_ensure_model
        self.base_url = ollama_base_url(base_url)
        ollama_ensure_model(self.base_url, self.model)

    def summarize(self, title: str, content: str) -> str:
        import requests

        response = requests.post(
            f"{self.base_url}/api/chat",
            json={
                "model": self.model,
                "messages": _chat_messages(title, content),
                "stream": False,
            },
            timeout=(10, self.timeout),
        )
        if not response.ok:
            raise RuntimeError(
                f"Ollama returned HTTP {response.status_code} for model {self.model}: "
                f"{(response.text or '')[:200]}"
            )

        return strip_summary_preamble(response.json()["message"]["content"])


class PassthroughSummarization:
    """
    No model at all: the summary is the start of the content.

    Default when no LLM credentials are found.
    """

    def __init__(self, max_chars: int = 500):
        self.max_chars = max_chars

    def summarize(self, title: str, content: str) -> str:
        if len(content) <= self.max_chars:
            return content
        return content[:self.max_chars].rsplit(" ", 1)[0] + "..."


for _name, _cls in (
    ("anthropic", AnthropicSummarization),
    ("openai", OpenAISummarization),
    ("ollama", OllamaSummarization),
    ("passthrough", PassthroughSummarization),
):
    get_registry().register_summarization(_name, _cls)
