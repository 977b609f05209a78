"""Wedding URL slugs: format rules, reserved names, suggestions."""
import re
from datetime import date

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50

_SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")

# System routes, language prefixes and common reserved names
RESERVED_SLUGS = frozenset({
    "admin", "api", "demo", "demo_gallery", "demo_livre-or", "connexion", "pricing",
    "offline", "account", "god", "test", "signup", "inscription", "registro",
    "fr", "es", "en",
    "www", "app", "static", "assets", "images", "css", "js", "_next", ".well-known",
})

THEME_IDS = ("classic", "luxe", "jardin", "cobalt", "editorial", "french")


def normalize_slug(slug: str) -> str:
    return (slug or "").strip().lower()


def is_valid_slug_format(slug: str) -> bool:
    if not SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH:
        return False
    return bool(_SLUG_PATTERN.match(slug))


def is_reserved(slug: str) -> bool:
    return slug in RESERVED_SLUGS


def slug_suggestions(base_slug: str, today: date | None = None) -> list[str]:
    """Alternatives for a taken slug: <slug>-<year>, then <slug>-2 .. <slug>-4."""
    year = (today or date.today()).year
    candidates = [f"{base_slug}-{year}"] + [f"{base_slug}-{i}" for i in range(2, 5)]
    return [c for c in candidates if is_valid_slug_format(c)]
