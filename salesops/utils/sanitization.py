from typing import Any, Optional

import bleach


def sanitize_text(value: Optional[Any]) -> Optional[str]:
    """
    Strip all markup from user-supplied text before it goes into an email.

    Every tag and attribute is removed (tag contents are kept) and the
    remaining text is HTML-escaped. Existing entities are left alone, so
    running it twice gives the same result as running it once.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return bleach.clean(value, tags=[], attributes={}, strip=True, strip_comments=True)
