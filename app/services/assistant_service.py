import json
from datetime import datetime, timezone
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.core.exceptions import NotConfigured, UpstreamFailure

SYSTEM_PROMPT = (
    "You are a Supabase compliance expert assistant. Answer the user's prompt using the provided context. "
    "Be concise, actionable, and clear. If SQL is needed, use markdown code blocks."
)


def build_user_prompt(question: str, context: Any) -> str:
    return f"Context:\n{json.dumps(context, indent=2, default=str)}\n\nPrompt:\n{question}"


class AssistantService:
    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise NotConfigured("OPENAI_API_KEY is not configured; the assistant is unavailable.")
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS)
        return self._client

    async def ask(self, question: str, context: Any) -> dict[str, str]:
        """Forward the question with its context and return the model's answer verbatim."""
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(question, context)},
                ],
                temperature=settings.OPENAI_TEMPERATURE,
                max_tokens=settings.OPENAI_MAX_TOKENS,
            )
        except openai.APIStatusError as exc:
            raise UpstreamFailure(
                f"Failed to get AI compliance analysis: {exc.status_code} {exc.message}",
                upstream_status=exc.status_code,
            ) from exc
        except openai.OpenAIError as exc:
            raise UpstreamFailure(f"Failed to get AI compliance analysis: {exc}") from exc

        return {
            "message": completion.choices[0].message.content or "",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
