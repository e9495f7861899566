from . import auth, gallery, health, mint, tasks

__all__ = ["auth", "gallery", "health", "mint", "tasks"]
