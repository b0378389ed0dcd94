"""
GitOps webhook service.

Provides the FastAPI routes VCS providers and CI jobs call, plus the project
API used to sync sheets from a linked repository.
"""
