"""
  Placeholder modules for compile-only and execute-only use.

Every specifier resolves to a native module with no exports. Nothing is
read from disk and nothing is resolved for real: `import "m"` links, a
namespace import sees an empty namespace and a named import fails at link
time with the engine's own SyntaxError.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from jsbc.engine import Context, ModuleDef, new_c_module
from jsbc.errors import ModuleRegistrationError

log = logging.getLogger(__name__)


def stub_module_init(ctx: Context, module: ModuleDef) -> int:
    """Init hook of a stub module: exports nothing, always succeeds."""
    return 0


def resolve_stub_module(ctx: Context, name: str, opaque: Any = None) -> Optional[ModuleDef]:
    """Module loader installed on every runtime; None only for a non-string name."""
    log.debug("resolving stub module %r", name)
    return new_c_module(ctx, name, stub_module_init)


def register_stub_modules(ctx: Context, names: Iterable[str]) -> None:
    for name in names:
        if resolve_stub_module(ctx, name) is None:
            raise ModuleRegistrationError(f"could not create module {name!r}")
        log.debug("registered stub module %r", name)
