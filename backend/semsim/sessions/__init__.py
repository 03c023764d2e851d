from semsim.sessions.store import SessionStore

__all__ = ["SessionStore"]
