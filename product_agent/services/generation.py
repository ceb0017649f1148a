"""
Structured generation service with provider failover.
Uses LangChain chat models; every response is validated against a pydantic schema.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_groq import ChatGroq
from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage
from langchain_core.output_parsers import StrOutputParser

from product_agent.core.config import settings
from product_agent.services.json_repair import JSONRepairError, repair_json

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

STRICT_JSON_SUFFIX = "\n\nCRITICAL: Return ONLY valid JSON. No XML tags, parameter names, or additional text."


class AIProvider(str, Enum):
    """Supported AI providers."""
    GEMINI = "gemini"
    GROQ = "groq"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


class GenerationError(Exception):
    """Raised when no provider produced output conforming to the schema."""
    pass


class ModelNotFoundError(GenerationError):
    """Raised when the requested model does not exist on the provider."""
    pass


def _is_model_not_found(error: Exception) -> bool:
    text = str(error).lower()
    return (
        "404" in text
        or "model_not_found" in text
        or "model not found" in text
        or ("model" in text and "does not exist" in text)
        or "no endpoints found" in text
    )


def split_model_id(model: Optional[str]) -> Tuple[Optional[AIProvider], Optional[str]]:
    """Split ``provider/model-name`` ids; bare names carry no provider."""
    if not model:
        return None, None
    head, sep, tail = model.partition("/")
    if sep:
        try:
            return AIProvider(head.lower()), tail
        except ValueError:
            pass
    return None, model


class GenerationService:
    """Structured output over LangChain chat models, with failover, retry and JSON repair."""

    def __init__(self):
        self.available: List[AIProvider] = self._detect_providers()

    def _detect_providers(self) -> List[AIProvider]:
        keys = {
            AIProvider.GEMINI: settings.GEMINI_API_KEY,
            AIProvider.GROQ: settings.GROQ_API_KEY,
            AIProvider.OPENAI: settings.OPENAI_API_KEY,
            AIProvider.OPENROUTER: settings.OPENROUTER_API_KEY,
        }
        available = [provider for provider, key in keys.items() if key]
        if not available:
            logger.warning("No AI providers configured; generation calls will fail until an API key is set")
        return available

    def _default_model(self, provider: AIProvider) -> str:
        return {
            AIProvider.GEMINI: settings.GEMINI_MODEL,
            AIProvider.GROQ: settings.GROQ_MODEL,
            AIProvider.OPENAI: settings.OPENAI_MODEL,
            AIProvider.OPENROUTER: settings.OPENROUTER_MODEL,
        }[provider]

    def _build_model(self, provider: AIProvider, model_name: str, temperature: float, max_tokens: int):
        """Create a chat model bound to this call's parameters."""
        if provider == AIProvider.GEMINI:
            return ChatGoogleGenerativeAI(
                google_api_key=settings.GEMINI_API_KEY,
                model=model_name,
                temperature=temperature,
                max_output_tokens=max_tokens,
                timeout=settings.AI_TIMEOUT_SECONDS,
            )
        if provider == AIProvider.GROQ:
            return ChatGroq(
                api_key=settings.GROQ_API_KEY,
                model=model_name,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=settings.AI_TIMEOUT_SECONDS,
            )
        if provider == AIProvider.OPENROUTER:
            return ChatOpenAI(
                api_key=settings.OPENROUTER_API_KEY,
                base_url=settings.OPENROUTER_BASE_URL,
                model=model_name,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=settings.AI_TIMEOUT_SECONDS,
            )
        return ChatOpenAI(
            api_key=settings.OPENAI_API_KEY,
            model=model_name,
            temperature=temperature,
            max_completion_tokens=max_tokens,
            timeout=settings.AI_TIMEOUT_SECONDS,
        )

    def _get_provider_order(self, pinned: Optional[AIProvider] = None) -> List[AIProvider]:
        """Get provider order: the pinned provider, then configured priority, then the rest."""
        order: List[AIProvider] = []
        if pinned and pinned in self.available:
            order.append(pinned)
        for name in (settings.PRIMARY_AI_PROVIDER, settings.SECONDARY_AI_PROVIDER, settings.TERTIARY_AI_PROVIDER):
            provider = getattr(AIProvider, (name or "").upper(), None)
            if provider and provider in self.available and provider not in order:
                order.append(provider)
        for provider in AIProvider:
            if provider in self.available and provider not in order:
                order.append(provider)
        return order

    def _plan_attempts(self, model: Optional[str]) -> List[Tuple[AIProvider, str]]:
        pinned, model_name = split_model_id(model)
        attempts = []
        for provider in self._get_provider_order(pinned):
            if pinned is None and model_name and not attempts:
                # Bare model names apply to the first provider in the order.
                attempts.append((provider, model_name))
            elif provider == pinned and model_name:
                attempts.append((provider, model_name))
            else:
                attempts.append((provider, self._default_model(provider)))
        return attempts

    async def _structured_call(self, chat_model, schema: Type[SchemaT], prompt: str) -> SchemaT:
        runnable = chat_model.with_structured_output(schema)
        result = await runnable.ainvoke([HumanMessage(content=prompt)])
        if isinstance(result, schema):
            return result
        return schema.model_validate(result)

    async def _repair_call(self, chat_model, schema: Type[SchemaT], prompt: str) -> SchemaT:
        """Generate raw text, repair it, and validate it against the schema."""
        chain = chat_model | StrOutputParser()
        text = await chain.ainvoke([HumanMessage(content=prompt + STRICT_JSON_SUFFIX)])
        return parse_structured(text, schema)

    async def _attempt(self, provider: AIProvider, model_name: str, schema: Type[SchemaT], prompt: str,
                       temperature: float, max_tokens: int) -> SchemaT:
        chat_model = self._build_model(provider, model_name, temperature, max_tokens)
        try:
            return await self._structured_call(chat_model, schema, prompt)
        except Exception as e:
            if _is_model_not_found(e):
                raise ModelNotFoundError(f"Model {model_name} unavailable on {provider.value}: {e}") from e
            logger.warning(f"Structured output failed on {provider.value}, attempting JSON repair fallback: {e}")
        return await self._repair_call(chat_model, schema, prompt)

    async def generate_structured(
        self,
        model: Optional[str],
        schema: Type[SchemaT],
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        fallback_model: Optional[str] = None,
    ) -> SchemaT:
        """Generate output conforming to ``schema`` or raise :class:`GenerationError`.

        Providers are tried in failover order; each provider gets up to
        ``GENERATION_RETRY_ATTEMPTS`` attempts with linear backoff. A
        model-not-found error switches to ``fallback_model`` once.
        """
        if not self.available:
            raise GenerationError("No AI providers available. Please check your API keys.")

        temperature = settings.AI_TEMPERATURE if temperature is None else temperature
        max_tokens = max_tokens or settings.AI_MAX_TOKENS
        last_error: Optional[Exception] = None

        for provider, model_name in self._plan_attempts(model):
            for attempt in range(1, settings.GENERATION_RETRY_ATTEMPTS + 1):
                start_time = time.time()
                try:
                    logger.info(f"Attempting structured generation with {provider.value}:{model_name} (attempt {attempt})")
                    result = await self._attempt(provider, model_name, schema, prompt, temperature, max_tokens)
                    logger.info(
                        f"Structured generation succeeded with {provider.value} in {time.time() - start_time:.2f}s"
                    )
                    return result
                except ModelNotFoundError as e:
                    last_error = e
                    if fallback_model and fallback_model != model:
                        logger.warning(f"{e}; falling back to {fallback_model}")
                        return await self.generate_structured(
                            fallback_model, schema, prompt, temperature, max_tokens, fallback_model=None
                        )
                    break
                except Exception as e:
                    logger.warning(f"Provider {provider.value} failed: {str(e)}")
                    last_error = e
                    if attempt < settings.GENERATION_RETRY_ATTEMPTS:
                        await asyncio.sleep(settings.GENERATION_RETRY_BACKOFF_MS * attempt / 1000)

        raise GenerationError(f"All AI providers failed. Last error: {str(last_error)}")


def parse_structured(text: str, schema: Type[SchemaT]) -> SchemaT:
    """Repair ``text`` into JSON and validate it, raising GenerationError on failure."""
    try:
        data: Any = repair_json(text)
        return schema.model_validate(data)
    except (JSONRepairError, ValidationError) as e:
        raise GenerationError(f"Model output does not match {schema.__name__}: {e}") from e
