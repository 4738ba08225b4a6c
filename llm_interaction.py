from functools import lru_cache
from typing import List, Optional

import structlog
from openai import AsyncOpenAI

from settings import get_settings

logger = structlog.get_logger(__name__)

# --- Application Info sent with every completion request ---
APP_NAME = "Do Up"

CAREER_ASSISTANT_PERSONA = (
    "You are a helpful career assistant that helps people find and apply for jobs. "
    "Give concise, practical advice."
)

FALLBACK_REPLY = (
    "I'm sorry, I'm having trouble generating a response right now. "
    "Please try again later."
)


@lru_cache()
def get_client() -> AsyncOpenAI:
    """OpenAI SDK client pointed at the configured OpenAI-compatible endpoint."""
    settings = get_settings()
    if not settings.ai_api_key:
        logger.error("AI_API_KEY not found in environment variables or .env file.")
        raise ValueError("AI_API_KEY not found. Ensure it's set in your environment or .env file.")
    return AsyncOpenAI(
        base_url=settings.ai_api_base_url,
        api_key=settings.ai_api_key,
        default_headers={"X-Title": APP_NAME},
    )


def build_system_prompt(context: str = "") -> str:
    if not context:
        return CAREER_ASSISTANT_PERSONA
    return f"{CAREER_ASSISTANT_PERSONA}\n\n{context}"


async def call_llm_for_chat(conversation: List[dict], context: str = "") -> Optional[str]:
    """Send the whole conversation plus a system prompt and return the reply text."""
    settings = get_settings()
    messages = [{"role": "system", "content": build_system_prompt(context)}, *conversation]

    response = await get_client().chat.completions.create(
        model=settings.ai_model,
        messages=messages,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
    )
    reply = response.choices[0].message.content
    logger.info("Received AI completion", turns=len(conversation), reply_length=len(reply or ""))
    return reply
