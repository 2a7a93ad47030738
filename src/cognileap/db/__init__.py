from cognileap.db.models import Base, Conversation, Document, Message, StudyOutput
from cognileap.db.session import close_db, configure_engine, db_session, init_db

__all__ = [
    "Base",
    "Conversation",
    "Document",
    "Message",
    "StudyOutput",
    "close_db",
    "configure_engine",
    "db_session",
    "init_db",
]
