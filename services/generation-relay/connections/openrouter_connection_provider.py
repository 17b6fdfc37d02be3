from typing import Dict, List, Optional

import httpx
import structlog
from core.config import Settings
from core.exceptions import ConfigurationError, ProviderRejection, ProviderTransportError
from domain.interfaces import ChatCompletionProvider
from domain.models import ChatTurn

logger = structlog.get_logger()

FALLBACK_REPLY = "Sorry, I could not generate a reply."

# The browser labels its own turns "user"/"bot"
_ROLE_MAP = {"user": "user", "bot": "assistant", "assistant": "assistant"}


class OpenRouterChatProvider(ChatCompletionProvider):
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not settings.OPENROUTER_API_KEY:
            raise ConfigurationError("Missing OpenRouter API key")
        self.api_key = settings.OPENROUTER_API_KEY
        self.base_url = settings.OPENROUTER_BASE_URL.rstrip("/")
        self.model = settings.CHAT_MODEL
        self.system_prompt = settings.CHAT_SYSTEM_PROMPT
        self.context_limit = settings.CHAT_CONTEXT_LIMIT
        self.timeout = settings.HTTP_TIMEOUT
        self._transport = transport

    def build_messages(self, message: str, context: List[ChatTurn]) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt}]
        recent = context[-self.context_limit :] if self.context_limit > 0 else []
        for turn in recent:
            role = _ROLE_MAP.get(turn.role.lower())
            if role and turn.content:
                messages.append({"role": role, "content": turn.content})
        messages.append({"role": "user", "content": message})
        return messages

    async def complete(self, message: str, context: List[ChatTurn]) -> str:
        payload = {"model": self.model, "messages": self.build_messages(message, context)}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            except httpx.HTTPError as e:
                logger.error("openrouter_unreachable", error=str(e))
                raise ProviderTransportError(
                    "Failed to connect to OpenRouter API", provider="openrouter", original_error=e
                )

        if resp.status_code >= 500:
            raise ProviderTransportError(f"OpenRouter returned HTTP {resp.status_code}.", provider="openrouter")
        if resp.is_error:
            logger.warning("openrouter_rejected", status=resp.status_code)
            raise ProviderRejection(
                resp.text[:500] or "OpenRouter rejected the request.",
                code=str(resp.status_code),
                provider="openrouter",
            )

        try:
            data = resp.json()
            reply = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("openrouter_reply_missing")
            return FALLBACK_REPLY

        return reply or FALLBACK_REPLY
