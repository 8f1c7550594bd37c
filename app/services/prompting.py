"""Prompt augmentation and the ad prompt templates used by the generation flows."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from app.models import DEFAULT_LANGUAGE

AD_TEMPLATES: dict[str, Callable[[str, str, str, str], str]] = {}


def _ratio_value(token: str) -> Optional[float]:
    try:
        w_str, h_str = token.replace("×", ":").replace("x", ":").split(":", 1)
        w, h = float(w_str), float(h_str)
    except (AttributeError, ValueError):
        return None
    if w <= 0 or h <= 0:
        return None
    return w / h


def nearest_supported_ratio(requested: Optional[str], supported: Iterable[str]) -> str:
    """Pick the supported ratio closest to the requested one (``1:1`` if unparsable)."""

    choices = list(supported)
    target = _ratio_value(requested or "")
    if target is None:
        return "1:1" if "1:1" in choices else choices[0]
    return min(choices, key=lambda token: abs((_ratio_value(token) or 1.0) - target))


def aspect_instruction(aspect_ratio: str) -> str:
    return (
        f"Compose the image for a {aspect_ratio} aspect ratio and keep every element, "
        "including all text, fully inside that frame."
    )


def language_instruction(language: str) -> str:
    return (
        f"IMPORTANT: Generate all text content in {language}. Every headline, subheadline "
        f"and call-to-action rendered in the image must be written in {language}."
    )


def is_default_language(language: Optional[str]) -> bool:
    return not language or language.strip().lower() == DEFAULT_LANGUAGE.lower()


def augment_prompt(
    prompt: str,
    *,
    language: Optional[str] = None,
    aspect_ratio: Optional[str] = None,
) -> str:
    """Append the aspect instruction first and the language instruction last."""

    parts = [prompt.strip()]
    if aspect_ratio:
        parts.append(aspect_instruction(aspect_ratio))
    if not is_default_language(language):
        parts.append(language_instruction(language.strip()))  # type: ignore[union-attr]
    return "\n\n".join(parts)


def translation_prompt(language: str) -> str:
    return f"""Adapt this image for {language} audience in a square (1:1) format.

Key requirements:
- Create a square (1:1) composition that will work well for display ads
- Translate text naturally and creatively to {language}, culturally native to the target audience
- Ensure the composition is balanced and centered for optimal expansion to other formats
- Maintain the visual design and layout
- Keep the same image style and quality
- Generate a new image with the translated text

Important: Return a high-quality image that looks professional and native to {language} speakers. The translation should feel natural, not literal."""


RESIZE_PROMPT = "Resize this image to 3:2 landscape format. Keep all elements visible and readable."


def _template(key: str):
    def register(fn: Callable[[str, str, str, str], str]) -> Callable[[str, str, str, str], str]:
        AD_TEMPLATES[key] = fn
        return fn

    return register


@_template("standard")
def _standard(product: str, description: str, feature: str, feature_description: str) -> str:
    return f"""You're a top ad designer.

Create a high-converting static ad to promote this feature with both clear copy and a strong visual concept.

- Product: {product}
- Feature: {feature} - {feature_description}
- Description: {description}

Layout:
- Headline at the top (max 10 chars, bold, benefit-driven)
- Subheadline just below (max 20 chars, plain tone)
- Centered hero visual showing the feature in action (e.g. before/after or transformation)
- CTA at bottom: "Try {product} for free" or "Download for Free"
- Leave 15% bottom padding so CTA isn't cropped

Design Rules:
- DO NOT include any logos
- All text and visuals must remain inside a central 80% safe zone
- Use clean, modern design: soft shadows, gradient or neutral background, high clarity"""


@_template("pure_hero")
def _pure_hero(product: str, description: str, feature: str, feature_description: str) -> str:
    return f"""You are a world-class ad creative designer.

Create a high-quality static ad that highlights the product feature below through strong visuals. Editorial style. No brand logo.

Inputs:
- Product: {product}
- Feature: {feature} - {feature_description}
- Product Description: {description}"""


@_template("testimonial")
def _testimonial(product: str, description: str, feature: str, feature_description: str) -> str:
    return f"""Create a testimonial ad for {product}'s {feature} feature.

Product: {product}
Feature: {feature} - {feature_description}
Context: {description}

Generate:
1. Quote: 1-2 sentences in quotation marks, natural language
2. Attribution: "- [Name], [Job Title]" (e.g., "- Sarah K., Small Business Owner")
3. User Photo: realistic person in their work environment

Visual: Clean layout with quote, attribution, and authentic user photo. No logos."""


@_template("comic")
def _comic(product: str, description: str, feature: str, feature_description: str) -> str:
    return f"""You are a skilled comic artist and storyteller.

Create a 3-panel comic strip that tells a story about this product feature.

Inputs:
- Product: {product}
- Feature: {feature} - {feature_description}
- Context: {description}

Requirements:
- 3 panels: Setup -> Problem -> Solution
- Simple cartoon style characters
- Brief dialogue bubbles (max 8 words each)
- Show the feature solving a relatable problem
- No logos or brand names in visuals"""


@_template("creative_freedom")
def _creative_freedom(product: str, description: str, feature: str, feature_description: str) -> str:
    return f"""You are an innovative creative director with unlimited artistic freedom.

Create a completely original advertisement that showcases this product feature in an unexpected, memorable way.

Inputs:
- Product: {product}
- Feature: {feature} - {feature_description}
- Context: {description}

Only constraints:
- Keep the feature benefit understandable
- No logos required
- Make it memorable and engaging"""


FORMAT_TO_TEMPLATE = {
    "Standard Template": "standard",
    "Pure Hero Concept": "pure_hero",
    "Testimonial": "testimonial",
    "Comic Story": "comic",
    "Creative Freedom": "creative_freedom",
}


def _normalise_format_name(name: str) -> str:
    # Clients send the display label, sometimes decorated with a trailing emoji.
    return "".join(ch for ch in name if ch.isascii()).strip()


def build_ad_prompt(
    format_name: str,
    product: str,
    description: str,
    feature: str,
    feature_description: str,
) -> Optional[str]:
    """Render the template mapped to ``format_name``; ``None`` when unknown."""

    key = FORMAT_TO_TEMPLATE.get(_normalise_format_name(format_name))
    if key is None:
        return None
    return AD_TEMPLATES[key](product, description, feature, feature_description)
