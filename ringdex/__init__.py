"""
RingDEX Package

Core imports are lazily loaded.  For direct module access, import from
submodules:

    from ringdex.exchange import RingExchange
    from ringdex.crypto import sign_hash
    from ringdex.exceptions import RingDexException
"""


def __getattr__(name):
    """Lazy module loading."""
    if name == 'RingExchange':
        from .exchange import RingExchange
        return RingExchange
    elif name == 'EngineConfig':
        from .config import EngineConfig
        return EngineConfig
    elif name == 'RingDexException':
        from .exceptions import RingDexException
        return RingDexException
    raise AttributeError(f"module 'ringdex' has no attribute {name!r}")


__all__ = ['RingExchange', 'EngineConfig', 'RingDexException']
