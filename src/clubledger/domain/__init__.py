"""Domain layer for clubledger."""

__all__ = [
    "AIMatchingService",
    "AutoMatchService",
    "CategorizationService",
    "IntegrityService",
    "LinkingService",
    "SplitService",
]

_SERVICES = {
    "AIMatchingService": "clubledger.domain.ai_matching",
    "AutoMatchService": "clubledger.domain.auto_match",
    "CategorizationService": "clubledger.domain.categorization",
    "IntegrityService": "clubledger.domain.integrity",
    "LinkingService": "clubledger.domain.linking",
    "SplitService": "clubledger.domain.splitting",
}


# Services import the database layer, which imports entities from here;
# resolve them lazily to avoid a circular import
def __getattr__(name):
    if name in _SERVICES:
        import importlib

        return getattr(importlib.import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
