import re

from unidecode import unidecode


def slugify(text: str) -> str:
    """URL slug for dashboard titles and app page names."""
    text = unidecode(text).lower()
    return re.sub(r"[^a-z0-9]+", "-", text).strip("-")
