"""SQL-backed collaborators: entity directory and relationship redirection."""

from persona_resolver.directory.sql import SqlEntityDirectory, SqlRelationshipRedirector

__all__ = ["SqlEntityDirectory", "SqlRelationshipRedirector"]
