"""
Limpieza de texto libre que llega del frontend (nombres, descripciones).

Los nombres y descripciones de NFTs y colecciones se muestran despues en
el marketplace a otros usuarios. Si guardamos "<script>..." tal cual,
cualquier vista que lo renderice sin escapar queda expuesta a XSS.

    sanitize_text("<b>Sunset</b>")          -> "Sunset"
    sanitize_html("<p>hola</p><img src=x>") -> "<p>hola</p>"

bleach hace el parseo HTML de verdad (no una regex sobre "<" y ">"), y
despues quitamos los restos que bleach deja como texto plano: protocolos
"javascript:" y handlers "onclick=".
"""

import re

import bleach

# Formato basico permitido en descripciones. Sin atributos.
ALLOWED_DESCRIPTION_TAGS = frozenset({"b", "i", "em", "strong", "br", "p"})

_JAVASCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)


def _strip_script_residue(value: str) -> str:
    value = _JAVASCRIPT_PROTOCOL.sub("", value)
    value = _EVENT_HANDLER.sub("", value)
    return value.strip()


def sanitize_text(value: str) -> str:
    """Texto plano: elimina todas las etiquetas HTML."""
    if not value:
        return ""
    cleaned = bleach.clean(value.replace("\x00", ""), tags=frozenset(), attributes={}, strip=True)
    return _strip_script_residue(cleaned)


def sanitize_html(value: str) -> str:
    """HTML con formato basico (b, i, em, strong, br, p) y sin atributos."""
    if not value:
        return ""
    cleaned = bleach.clean(
        value.replace("\x00", ""),
        tags=ALLOWED_DESCRIPTION_TAGS,
        attributes={},
        strip=True,
    )
    return _strip_script_residue(cleaned)
