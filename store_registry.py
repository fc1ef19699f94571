"""
Process-wide registry for the order flow engine used by the HTTP routes.

server.py builds the engine (session store + collaborators) at startup and
registers it here; tests register an engine wired to in-memory stores.
"""

_engine = None


def set_engine(engine):
    global _engine
    _engine = engine


def get_engine():
    if _engine is None:
        raise RuntimeError("Order flow engine has not been registered")
    return _engine
