from .allocation_repository import AllocationRepository
from .task_repository import TaskRepository
from .translator_repository import TranslatorRepository

__all__ = ["AllocationRepository", "TaskRepository", "TranslatorRepository"]
