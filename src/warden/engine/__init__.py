"""Query engine adapters."""

from warden.engine.sqla import SQLAlchemyEngine, create_warden_engine

__all__ = ["SQLAlchemyEngine", "create_warden_engine"]
