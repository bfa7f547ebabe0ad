from .agent_repo import AgentRepository, SQLAlchemyAgentRepository
from .customization_repo import CustomizationRepository, SQLAlchemyCustomizationRepository
from .document_repo import DocumentRepository, SQLAlchemyDocumentRepository
from .user_repo import SQLAlchemyUserRepository, UserRepository

__all__ = [
    "AgentRepository",
    "CustomizationRepository",
    "DocumentRepository",
    "SQLAlchemyAgentRepository",
    "SQLAlchemyCustomizationRepository",
    "SQLAlchemyDocumentRepository",
    "SQLAlchemyUserRepository",
    "UserRepository",
]
