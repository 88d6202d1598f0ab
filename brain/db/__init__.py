from brain.db.postgres import PostgresClient

__all__ = ["PostgresClient"]
