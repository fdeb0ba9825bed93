from .memory import InMemoryDistributionRepository, InMemoryEpochRepository
from .pg_notify import notify, wait_for_notify
from .repositories import DBDistributionRepository, DBEpochRepository
from .session import engine, create_session, database_url
