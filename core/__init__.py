"""Ядро спільних (SSOT) утиліт sync_lite.

Цей пакет містить лише загальні будівельні блоки, які імпортують і сервер,
і клієнт:
- серіалізацію/десеріалізацію;
- таксономію помилок;
- контракти (wire-протокол).

Логіка dispatch/кешу живе у `server/` та `client/`.
"""

from __future__ import annotations

from . import errors as errors
from . import serialization as serialization

__all__ = [
    "errors",
    "serialization",
]
