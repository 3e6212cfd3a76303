from __future__ import annotations

from collections.abc import Iterable

CUSTOM_MODEL = "custom"

KNOWN_MODELS: list[tuple[str, str]] = [
    ("gemini-2.5-flash", "Gemini 2.5 Flash (recommended)"),
    ("gemini-2.5-pro", "Gemini 2.5 Pro"),
    ("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite"),
    ("gemini-1.5-flash", "Gemini 1.5 Flash"),
    ("gemini-1.5-pro", "Gemini 1.5 Pro"),
]


def decorate_model_label(name: str) -> str:
    for model, label in KNOWN_MODELS:
        if model == name:
            return label
    return name


def model_options(models: Iterable[str] = (), *, include_custom: bool = False) -> list[tuple[str, str]]:
    """Build ``(label, value)`` pairs for a select widget.

    Known models come first, followed by any extra names in *models*.
    """
    seen: set[str] = set()
    options: list[tuple[str, str]] = []
    for model in [name for name, _ in KNOWN_MODELS] + list(models):
        if not isinstance(model, str):
            continue
        model_name = model.strip()
        if not model_name or model_name in seen or model_name == CUSTOM_MODEL:
            continue
        seen.add(model_name)
        options.append((decorate_model_label(model_name), model_name))
    if include_custom:
        options.append(("Custom model...", CUSTOM_MODEL))
    return options
