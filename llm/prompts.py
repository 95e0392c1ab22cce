"""LLM prompt templates for transaction categorization"""

import json
import re
from typing import Any, Dict, Optional

from core.enums import Category
from core.interfaces import LLMTask


class CategorizationPrompt(LLMTask):
    """Prompt for transaction categorization (Stage 3)"""

    system_prompt = (
        "You are a financial transaction categorizer. "
        "Choose exactly one category from the list you are given. "
        "Respond only with valid JSON. No explanations or markdown."
    )

    @property
    def prompt_template(self) -> str:
        return """Categorize this financial transaction.

CATEGORIES: {categories}

Amount: ${amount}
Description: {description}
Date: {date}{email_context}

Respond with JSON only:
{{
    "category": "<one of the categories above>",
    "confidence": <0.0-1.0>
}}"""

    def build_prompt(self, context: Dict[str, Any]) -> str:
        email_context = ""
        if context.get("email_subject"):
            email_context += f"\nEmail Subject: {context['email_subject']}"
        if context.get("email_snippet"):
            email_context += f"\nEmail Snippet: {context['email_snippet']}"

        return self.prompt_template.format(
            categories=", ".join(category.value for category in Category),
            amount=f"{abs(context['amount']):.2f}",
            description=context["description"],
            date=context["date"].isoformat() if hasattr(context["date"], "isoformat") else context["date"],
            email_context=email_context,
        )

    def parse_response(self, response: str) -> Dict[str, Any]:
        """
        Parse ``{"category": ..., "confidence": ...}`` from a raw response

        Raises:
            ValueError: If no JSON object with a category can be found
        """
        clean = self._clean_json_response(response)
        parsed = self._robust_json_load(clean, response)

        category = parsed.get("category")
        if not isinstance(category, str) or not category.strip():
            raise ValueError(f"Response has no category: {response[:200]!r}")

        try:
            confidence = float(parsed.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        return {
            "category": category.strip(),
            "confidence": min(1.0, max(0.0, confidence)),
        }

    def _clean_json_response(self, response: str) -> str:
        """Clean JSON response from markdown or extra text"""
        clean = response.strip()

        # Remove markdown code blocks
        if clean.startswith("```"):
            parts = clean.split("```")
            if len(parts) >= 3:
                clean = parts[1]
                if clean.startswith("json"):
                    clean = clean[4:]

        # Try to extract JSON object
        start_idx = clean.find("{")
        end_idx = clean.rfind("}")

        if start_idx != -1 and end_idx != -1 and end_idx > start_idx:
            clean = clean[start_idx:end_idx + 1]

        return clean.strip()

    def _robust_json_load(self, primary: str, fallback: str) -> Dict[str, Any]:
        """Best-effort JSON parsing with recovery steps."""
        def _strip_trailing_commas(text: str) -> str:
            return re.sub(r",\s*([}\]])", r"\1", text)

        def _find_first_json_object(text: str) -> Optional[Dict[str, Any]]:
            decoder = json.JSONDecoder()
            for idx, char in enumerate(text):
                if char != "{":
                    continue
                try:
                    parsed, _ = decoder.raw_decode(text[idx:])
                except json.JSONDecodeError:
                    continue
                if isinstance(parsed, dict):
                    return parsed
            return None

        for candidate in (primary, _strip_trailing_commas(primary), fallback, _strip_trailing_commas(fallback)):
            parsed = _find_first_json_object(candidate)
            if parsed is not None:
                return parsed
        raise ValueError(f"No JSON object in response: {fallback[:200]!r}")
