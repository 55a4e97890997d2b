"""
Prompt builders for KQL generation and explanation
"""

import json
from typing import Any, Dict, Optional

from ..models import TechnicalLevel


def build_system_prompt(schema: Optional[Dict[str, Any]] = None) -> str:
    prompt = """You are an expert in Azure Application Insights KQL (Kusto Query Language).
Your task is to convert natural language queries into valid KQL queries for Application Insights.

Key guidelines:
- Generate only valid KQL syntax
- Use proper table names (requests, dependencies, exceptions, pageViews, traces, customEvents)
- Filter early with 'where timestamp > ago(...)' and avoid unnecessary sorting
- Use 'summarize' for aggregations and 'extend' for calculated columns
- Never generate commands that modify data

Return only JSON with this exact structure:
{
  "query": "your KQL query here",
  "confidence": 0.85,
  "reasoning": "short explanation of the approach"
}"""

    if schema:
        prompt += f"\n\nAvailable schema information:\n{json.dumps(schema, ensure_ascii=False, indent=2)}"

    return prompt


def build_generation_prompt(user_input: str) -> str:
    return f'Convert this natural language query to KQL: "{user_input}"'


def build_regeneration_prompt(user_input: str, previous_query: str, attempt_number: int,
                              previous_reasoning: Optional[str] = None) -> str:
    prompt = f"""Convert this natural language query to KQL: "{user_input}"

Previous attempt (attempt {attempt_number - 1}):
{previous_query}
"""
    if previous_reasoning:
        prompt += f"\nReasoning of the previous attempt: {previous_reasoning}\n"

    prompt += """
Please provide a DIFFERENT approach or query structure. Consider:
- Alternative tables or joins
- Different aggregation methods
- Alternative time ranges or filters

The new query must still answer the original question."""
    return prompt


LANGUAGE_INSTRUCTIONS = {
    "ja": "日本語で回答してください。技術用語は英語と日本語の両方を併記してください。",
    "ko": "한국어로 답변해 주세요. 기술 용어는 영어와 한국어를 모두 병기해 주세요.",
    "zh": "请用中文回答。技术术语请同时提供英文和中文。",
    "es": "Responde en español. Para términos técnicos, proporciona tanto la versión en inglés como en español.",
    "fr": "Répondez en français. Pour les termes techniques, fournissez les versions française et anglaise.",
    "de": "Antworten Sie auf Deutsch. Geben Sie für technische Begriffe auch die englische Version an.",
}

LANGUAGE_ALIASES = {
    "japanese": "ja",
    "korean": "ko",
    "chinese": "zh",
    "spanish": "es",
    "french": "fr",
    "german": "de",
}

LEVEL_INSTRUCTIONS = {
    TechnicalLevel.BEGINNER: (
        "Use simple language and explain basic KQL concepts.\n"
        "Focus on what the query does rather than implementation details."
    ),
    TechnicalLevel.INTERMEDIATE: (
        "Provide balanced explanations that include:\n"
        "- Clear description of what each part does\n"
        "- Some technical details about how operators work\n"
        "- Basic performance considerations"
    ),
    TechnicalLevel.ADVANCED: (
        "Provide detailed technical explanations including:\n"
        "- Performance implications and optimization suggestions\n"
        "- Alternative approaches and trade-offs\n"
        "- Edge cases and limitations"
    ),
}


def language_instruction(language: Optional[str]) -> str:
    """'auto' and unknown languages fall back to English"""
    key = (language or "en").lower()
    key = LANGUAGE_ALIASES.get(key, key)
    return LANGUAGE_INSTRUCTIONS.get(key, "Respond in English.")


def build_explanation_system_prompt(language: str, technical_level: TechnicalLevel,
                                    include_examples: bool) -> str:
    examples = (
        "Provide practical examples when helpful."
        if include_examples
        else "Focus on clear explanations without extensive examples."
    )
    return f"""You are an expert in KQL (Kusto Query Language) for Azure Application Insights.
Your task is to explain KQL queries in a clear and educational way.

{language_instruction(language)}

{LEVEL_INSTRUCTIONS[technical_level]}

Explain:
1. What the query does overall
2. Each operator and function used
3. What data it retrieves
4. How the results are processed

{examples}"""
