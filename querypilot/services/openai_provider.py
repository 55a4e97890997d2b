"""
OpenAI 查询生成服务
KQL generation, regeneration and explanation through the OpenAI chat API
"""

import json
import re
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI

from ..core.interfaces import AIProvider
from ..models import Candidate, RegenerationContext, ExplanationOptions, HistoryAction, SystemConfig
from ..utils.exceptions import ConfigurationError, ProviderError
from ..utils.logging import get_logger
from .prompts import (
    build_system_prompt, build_generation_prompt, build_regeneration_prompt,
    build_explanation_system_prompt
)

logger = get_logger(__name__)

REGENERATION_TEMPERATURE = 0.5
REGENERATION_CONFIDENCE_FACTOR = 0.8

# Confidence derived from finish_reason when the model does not report one
FINISH_REASON_CONFIDENCE = {
    "stop": 0.85,
    "length": 0.6,
}
DEFAULT_CONFIDENCE = 0.7

CODE_BLOCK_PATTERN = re.compile(r"```(?:kql|kusto)?\s*([\s\S]*?)```", re.IGNORECASE)


def parse_model_response(content: str) -> Tuple[str, Optional[float], str]:
    """
    从模型响应中提取查询

    Accepts a JSON object (``query`` or ``kql`` key), JSON embedded in
    prose, a fenced code block, or plain text.

    Returns:
        (query, confidence or None, reasoning)
    """
    content = content.strip()

    data = None
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        start_idx = content.find('{')
        end_idx = content.rfind('}') + 1
        if start_idx != -1 and end_idx > start_idx:
            try:
                data = json.loads(content[start_idx:end_idx])
            except json.JSONDecodeError:
                data = None

    if isinstance(data, dict):
        query = data.get("query") or data.get("kql")
        if query:
            confidence = data.get("confidence")
            try:
                confidence = float(confidence) if confidence is not None else None
            except (TypeError, ValueError):
                confidence = None
            return str(query).strip(), confidence, str(data.get("reasoning") or "Generated by OpenAI")

    match = CODE_BLOCK_PATTERN.search(content)
    if match:
        return match.group(1).strip(), None, "Generated by OpenAI (non-JSON response)"

    return content, None, "Generated by OpenAI (non-JSON response)"


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


class OpenAIQueryProvider(AIProvider):
    """OpenAI based AIProvider"""

    def __init__(self, config: SystemConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.config.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is not configured")
            if self.config.openai_base_url:
                self._client = AsyncOpenAI(api_key=self.config.openai_api_key,
                                           base_url=self.config.openai_base_url)
            else:
                self._client = AsyncOpenAI(api_key=self.config.openai_api_key)
        return self._client

    async def generate_query(self, user_input: str, schema: Optional[Dict[str, Any]] = None) -> Candidate:
        logger.info("Generating KQL query with OpenAI...")
        content, finish_reason = await self._complete(
            build_system_prompt(schema),
            build_generation_prompt(user_input),
            temperature=self.config.openai_temperature
        )
        query, confidence, reasoning = parse_model_response(content)
        if not query:
            raise ProviderError("OpenAI returned an empty query")

        logger.info(f"KQL query generated successfully: {query}")
        return Candidate(
            text=query,
            confidence=self._confidence(confidence, finish_reason),
            reasoning=reasoning
        )

    async def regenerate_query(self, user_input: str, context: RegenerationContext,
                               schema: Optional[Dict[str, Any]] = None) -> Optional[Candidate]:
        """Ask for a different approach; None when the model repeats the previous query"""
        logger.info(f"Regenerating KQL query (attempt {context.attempt_number}) with OpenAI...")
        content, finish_reason = await self._complete(
            build_system_prompt(schema),
            build_regeneration_prompt(user_input, context.previous_query, context.attempt_number,
                                      context.previous_reasoning),
            temperature=REGENERATION_TEMPERATURE
        )
        query, confidence, reasoning = parse_model_response(content)

        if not query or query.strip() == context.previous_query.strip():
            logger.info("Regenerated query is identical to the previous one")
            return None

        return Candidate(
            text=query,
            confidence=_clamp(self._confidence(confidence, finish_reason) * REGENERATION_CONFIDENCE_FACTOR),
            reasoning=reasoning,
            attempt_number=context.attempt_number,
            provenance=HistoryAction.REGENERATED
        )

    async def explain_query(self, query: str, options: ExplanationOptions) -> str:
        logger.info(f"Generating KQL query explanation in language: {options.language}")
        content, _ = await self._complete(
            build_explanation_system_prompt(options.language, options.technical_level, options.include_examples),
            f"Please explain this KQL query:\n\n{query}",
            temperature=0.3
        )
        return content or "Unable to generate explanation"

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _confidence(self, reported: Optional[float], finish_reason: Optional[str]) -> float:
        if reported is not None:
            return _clamp(reported)
        return FINISH_REASON_CONFIDENCE.get(finish_reason, DEFAULT_CONFIDENCE)

    async def _complete(self, system_prompt: str, user_prompt: str,
                        temperature: float) -> Tuple[str, Optional[str]]:
        try:
            response = await self.client.chat.completions.create(
                model=self.config.openai_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=temperature
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"OpenAI request failed: {str(e)}")
            raise ProviderError(f"OpenAI request failed: {str(e)}") from e

        if not response.choices or not response.choices[0].message.content:
            raise ProviderError("No content received from OpenAI")

        choice = response.choices[0]
        return choice.message.content, choice.finish_reason
